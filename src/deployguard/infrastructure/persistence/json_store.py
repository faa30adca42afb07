"""JSON document store: one file per collection, rewritten atomically."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


class JsonDocumentStore:
    """A list of JSON documents kept in a single file.

    Writers are serialised by an ``asyncio.Lock``; each write goes to a
    temporary file that replaces the original with ``os.replace``, so a
    crash never leaves a half-written collection behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> list[dict[str, Any]]:
        async with self._lock:
            return await asyncio.to_thread(self._read_sync)

    async def append(self, document: dict[str, Any]) -> None:
        async with self._lock:
            documents = await asyncio.to_thread(self._read_sync)
            documents.append(document)
            await asyncio.to_thread(self._write_sync, documents)

    async def upsert(self, key: str, document: dict[str, Any]) -> None:
        """Replace the document whose ``key`` field matches, or append it."""
        async with self._lock:
            documents = await asyncio.to_thread(self._read_sync)
            for index, existing in enumerate(documents):
                if existing.get(key) == document.get(key):
                    documents[index] = document
                    break
            else:
                documents.append(document)
            await asyncio.to_thread(self._write_sync, documents)

    async def delete(self, key: str, values: set[str]) -> int:
        async with self._lock:
            documents = await asyncio.to_thread(self._read_sync)
            kept = [d for d in documents if d.get(key) not in values]
            removed = len(documents) - len(kept)
            if removed:
                await asyncio.to_thread(self._write_sync, kept)
            return removed

    def _read_sync(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        with self._path.open(encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, list):
            raise ValueError(f"{self._path} does not contain a JSON list")
        return data

    def _write_sync(self, documents: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(documents, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("json_store_written", path=str(self._path), documents=len(documents))
