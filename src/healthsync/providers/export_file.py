"""Cached, off-loop access to a JSON export file.

Exports can run to hundreds of megabytes, so the file is parsed in a worker
thread and the parsed document is reused until the file's mtime or size
changes.  Concurrent readers wait on one lock and share a single parse.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from src.healthsync.errors import CapabilityUnavailable

logger = logging.getLogger("healthsync.providers.export")


class ExportFile:
    """One export document on disk.

    Raises ``CapabilityUnavailable`` when the file is missing ('export
    missing') or unreadable ('denied'), and ``ValueError`` when it is not
    valid JSON.
    """

    def __init__(self, path: Path | str, feature: str, label: str) -> None:
        self.path = Path(path)
        self._feature = feature
        self._label = label
        self._lock = asyncio.Lock()
        self._stamp: tuple[int, int] | None = None
        self._document: dict | None = None
        self._error: ValueError | None = None

    def exists(self) -> bool:
        return self.path.exists()

    def _stat_stamp(self) -> tuple[int, int]:
        try:
            st = self.path.stat()
        except FileNotFoundError as exc:
            raise CapabilityUnavailable(self._feature, "export missing") from exc
        except PermissionError as exc:
            raise CapabilityUnavailable(self._feature, "denied") from exc
        return st.st_mtime_ns, st.st_size

    def _read(self) -> dict:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CapabilityUnavailable(self._feature, "export missing") from exc
        except PermissionError as exc:
            raise CapabilityUnavailable(self._feature, "denied") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid {self._label} export: {exc}") from exc
        return data if isinstance(data, dict) else {}

    async def load(self) -> dict:
        """Return the parsed document, re-reading only after the file changed."""
        async with self._lock:
            stamp = self._stat_stamp()
            if stamp != self._stamp:
                try:
                    self._document = await asyncio.to_thread(self._read)
                    self._error = None
                except ValueError as exc:
                    self._document, self._error = None, exc
                self._stamp = stamp
                logger.debug("Parsed %s export %s", self._label, self.path)
            if self._error is not None:
                raise self._error
            return self._document or {}
