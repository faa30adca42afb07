"""Remote deployer that drives the platform CLI (``sf``) as a subprocess."""

from __future__ import annotations

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any

import structlog

from deployguard.domain.errors import RemoteCommandError
from deployguard.domain.models.artifacts import ArtifactKind
from deployguard.domain.models.deployment import (
    DeploymentPackage,
    PushResult,
    VerificationSummary,
)
from deployguard.domain.ports.services import RemoteDeployer
from deployguard.infrastructure.remote.project_packager import folder_for, SOURCE_ROOT


logger = structlog.get_logger(__name__)

_QUERYABLE_TYPES = {"ApexClass", "ApexTrigger"}


def _soql_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class SalesforceCliDeployer(RemoteDeployer):
    """Runs ``sf`` with ``--json`` and interprets the structured output.

    Deploy commands execute inside the package root, which holds the
    ``sfdx-project.json`` written by the packager.
    """

    def __init__(self, cli_binary: str = "sf", test_wait_minutes: int = 10) -> None:
        self._cli = cli_binary
        self._test_wait_minutes = test_wait_minutes

    async def validate(self, package: DeploymentPackage, target: str) -> list[str]:
        code, payload = await self._run_json(
            ["project", "deploy", "validate", "--source-dir", "force-app",
             "--target-org", target],
            cwd=package.root,
        )
        if self._succeeded(code, payload):
            return []

        result = payload.get("result") or {}
        failures = (result.get("details") or {}).get("componentFailures") or []
        if isinstance(failures, dict):
            failures = [failures]
        errors = [
            f"{f.get('componentType', 'Component')} {f.get('fullName', '?')}: {f.get('problem', '')}"
            for f in failures
        ]
        if not errors:
            errors.append(f"Remote validation failed: {result.get('message') or payload.get('message', '')}")
        logger.warning("remote_validation_failed", target=target, errors=len(errors))
        return errors

    async def push(self, package: DeploymentPackage, target: str) -> PushResult:
        code, payload = await self._run_json(
            ["project", "deploy", "start", "--source-dir", "force-app", "--target-org", target],
            cwd=package.root,
        )
        result = payload.get("result") or {}
        success = self._succeeded(code, payload)
        logger.info(
            "remote_push_finished",
            target=target,
            deployment_id=package.deployment_id,
            status=result.get("status", payload.get("status")),
        )
        return PushResult(
            success=success,
            id=result.get("id"),
            message="" if success else str(payload.get("message") or result.get("status") or "Deploy failed"),
            details=result,
        )

    async def run_verification(self, target: str) -> VerificationSummary:
        code, payload = await self._run_json(
            ["apex", "run", "test", "--code-coverage", "--result-format", "json",
             "--target-org", target, "--wait", str(self._test_wait_minutes)],
        )
        summary = (payload.get("result") or {}).get("summary")
        if not summary:
            return VerificationSummary(
                passed=False,
                details=str(payload.get("message") or f"Test run exited with code {code}"),
            )

        coverage = summary.get("testRunCoverage")
        if isinstance(coverage, str):
            coverage = coverage.rstrip("%")
        duration = summary.get("testExecutionTime")
        if isinstance(duration, str):
            duration = duration.split()[0]
        return VerificationSummary(
            passed=summary.get("outcome") == "Passed",
            tests_run=int(summary.get("testsRan") or 0),
            tests_passed=int(summary.get("passing") or 0),
            coverage=float(coverage) if coverage not in (None, "") else None,
            duration_ms=int(float(duration)) if duration not in (None, "") else None,
            details=str(summary.get("outcome", "")),
        )

    async def retrieve(
        self, components: list[tuple[str, ArtifactKind]], target: str
    ) -> dict[str, str | None]:
        current: dict[str, str | None] = {}
        for name, kind in components:
            folder, metadata_type = folder_for(name, is_source=kind == ArtifactKind.SOURCE)
            member = name.split(".", 1)[0]
            if metadata_type in _QUERYABLE_TYPES:
                current[name] = await self._query_body(metadata_type, member, target)
            else:
                current[name] = await self._retrieve_file(metadata_type, member, folder, name, target)
        return current

    async def delete(self, components: list[str], target: str) -> list[str]:
        not_removed: list[str] = []
        for name in components:
            _, metadata_type = folder_for(name, is_source=name.endswith((".cls", ".trigger")))
            member = name.split(".", 1)[0]
            code, payload = await self._run_json(
                ["project", "delete", "source", "--metadata", f"{metadata_type}:{member}",
                 "--target-org", target, "--no-prompt"],
            )
            if not self._succeeded(code, payload):
                logger.warning("remote_delete_failed", target=target, component=name)
                not_removed.append(name)
        return not_removed

    async def _query_body(self, metadata_type: str, member: str, target: str) -> str | None:
        query = f"SELECT Id, Name, Body FROM {metadata_type} WHERE Name = '{_soql_literal(member)}'"
        code, payload = await self._run_json(
            ["data", "query", "--query", query, "--target-org", target],
        )
        if code != 0:
            raise RemoteCommandError(
                f"Query for {metadata_type} {member} failed: {payload.get('message', '')}"
            )
        records = (payload.get("result") or {}).get("records") or []
        return records[0].get("Body") if records else None

    async def _retrieve_file(
        self, metadata_type: str, member: str, folder: str, name: str, target: str
    ) -> str | None:
        with tempfile.TemporaryDirectory(prefix="deployguard-retrieve-") as out_dir:
            code, payload = await self._run_json(
                ["project", "retrieve", "start", "--metadata", f"{metadata_type}:{member}",
                 "--target-org", target, "--output-dir", out_dir],
            )
            if code != 0:
                raise RemoteCommandError(
                    f"Retrieve of {metadata_type} {member} failed: {payload.get('message', '')}"
                )
            candidates = [Path(out_dir) / SOURCE_ROOT / folder / name, Path(out_dir) / folder / name]
            for path in candidates:
                if path.exists():
                    return path.read_text(encoding="utf-8")
        return None

    @staticmethod
    def _succeeded(code: int, payload: dict[str, Any]) -> bool:
        status = (payload.get("result") or {}).get("status")
        return (code == 0 and payload.get("status", 0) == 0) or status == "Succeeded"

    async def _run_json(
        self, args: list[str], cwd: str | None = None
    ) -> tuple[int, dict[str, Any]]:
        """Run ``sf <args> --json``; non-zero exits still carry a JSON body."""
        command = [self._cli, *args, "--json"]
        logger.debug("remote_command", command=" ".join(command[:4]), cwd=cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RemoteCommandError(f"CLI binary not found: {self._cli}") from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        code = process.returncode or 0
        text = stdout.decode("utf-8", errors="replace").strip()
        if not text:
            raise RemoteCommandError(
                f"{' '.join(command[:4])} exited with code {code}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise RemoteCommandError(f"Unparseable CLI output: {text[:200]}") from e
        return code, payload if isinstance(payload, dict) else {"result": payload}
