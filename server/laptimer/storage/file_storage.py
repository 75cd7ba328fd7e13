"""File-based storage implementation.

Stores each key as one blob file: base_dir/<key>.json. Writes go to a
temporary file first and are moved into place, so a crash mid-write never
leaves a truncated blob behind.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import structlog

log = structlog.get_logger()

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileKeyValueStore:
    """KeyValueStore backed by one file per key on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key) or key.startswith("."):
            raise ValueError(f"invalid storage key: {key!r}")
        return self._base_dir / f"{key}.json"

    async def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    async def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "wb") as f:
            f.write(value)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        log.debug("blob_written", key=key, size=len(value), path=str(path))

    async def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
