"""Storage interface (port) for the key-value blob store."""

from __future__ import annotations

from typing import Protocol

# Keys used by the lap timer.
SESSIONS_KEY = "sessions"
CURRENT_SESSION_KEY = "currentSession"
FINISH_LINE_KEY = "finishLine"


class KeyValueStore(Protocol):
    """Port: maps string keys to opaque (JSON) blobs."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...
