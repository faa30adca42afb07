"""External reviewer run as a local command that reads the prompt on stdin."""

from __future__ import annotations

import asyncio
import shlex

import structlog

from deployguard.domain.errors import ReviewerTimeoutError
from deployguard.domain.ports.services import ExternalReviewer, ReviewerResponse


logger = structlog.get_logger(__name__)


class SubprocessReviewer(ExternalReviewer):
    """Runs ``command`` once per review, killing it when the timeout expires."""

    def __init__(self, command: str) -> None:
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("Reviewer command must not be empty")

    async def invoke(self, prompt: str, timeout_seconds: float) -> ReviewerResponse:
        process = await asyncio.create_subprocess_exec(
            *self._argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")), timeout=timeout_seconds
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            logger.warning("reviewer_timed_out", command=self._argv[0], timeout=timeout_seconds)
            raise ReviewerTimeoutError(f"Reviewer timed out after {timeout_seconds:g}s") from e

        return ReviewerResponse(
            exit_code=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
