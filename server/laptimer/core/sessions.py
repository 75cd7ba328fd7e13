"""Session repository — session history on top of the key-value store port.

Sessions live as one JSON array under ``"sessions"``; the in-progress
snapshot under ``"currentSession"``; the last finish line under
``"finishLine"``. Every store failure surfaces as StorageError so callers can
decide whether it is fatal (API reads) or log-and-continue (live tracking).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

import structlog

from laptimer.core.errors import InvalidFixError, SessionImportError, StorageError
from laptimer.core.models import FinishLine, Session
from laptimer.storage.base import CURRENT_SESSION_KEY, FINISH_LINE_KEY, SESSIONS_KEY

if TYPE_CHECKING:
    from laptimer.storage.base import KeyValueStore

log = structlog.get_logger()

# Finish line given to imported sessions that have none.
DEFAULT_FINISH_LINE = {"latitude": 0.0, "longitude": 0.0}


@dataclass(frozen=True)
class ImportResult:
    imported: int
    total: int


def default_session_name(date: str) -> str:
    """Derive a display name from an ISO-8601 date string."""
    try:
        parsed = datetime.fromisoformat(date.replace("Z", "+00:00"))
    except ValueError:
        return f"Session {date}"
    return f"Session {parsed:%Y-%m-%d %H:%M}"


def renumber_laps(session: Session) -> Session:
    """Force lap numbers to 1..n in order of appearance."""
    laps = tuple(
        lap if lap.lap_number == i else replace(lap, lap_number=i)
        for i, lap in enumerate(session.laps, start=1)
    )
    return replace(session, laps=laps)


def normalize_record(raw: Any, *, default_finish_line: bool = True) -> Session:
    """Validate one imported record and fill in the defaults.

    Requires ``id`` and ``date``. Missing ``finishLine`` becomes (0, 0) unless
    ``default_finish_line`` is false (records this server wrote itself),
    missing ``sessionName`` comes from the date, missing
    ``isDecelerationLap`` is false, and laps are renumbered. ``fastestLap``
    is ignored; Session derives it.
    """
    if not isinstance(raw, dict):
        raise SessionImportError("session record must be a JSON object")
    for key in ("id", "date"):
        if raw.get(key) in (None, ""):
            raise SessionImportError(f"session record is missing {key!r}")

    record = dict(raw)
    try:
        record["id"] = int(record["id"])
    except (TypeError, ValueError, OverflowError):
        raise SessionImportError(f"session id is not an integer: {raw['id']!r}") from None
    record["date"] = str(record["date"])
    if default_finish_line and not record.get("finishLine"):
        record["finishLine"] = dict(DEFAULT_FINISH_LINE)
    if not record.get("sessionName"):
        record["sessionName"] = default_session_name(record["date"])
    laps = record.get("laps") or []
    if not isinstance(laps, list) or not isinstance(record.get("track") or [], list):
        raise SessionImportError(f"session {record['id']}: track and laps must be arrays")

    try:
        session = Session.from_dict(record)
    except (InvalidFixError, TypeError, ValueError, OverflowError, AttributeError) as exc:
        raise SessionImportError(f"session {record['id']}: {exc}") from exc
    return renumber_laps(session)


def parse_import_payload(payload: bytes | str | list) -> list[Session]:
    """Parse an exported JSON array. Any bad record aborts the whole import."""
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SessionImportError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise SessionImportError("import payload must be a JSON array of sessions")
    return [normalize_record(raw) for raw in payload]


def merge_sessions(existing: Iterable[Session], incoming: Iterable[Session]) -> list[Session]:
    """Deduplicate by id. Later records win; first-seen order is kept."""
    merged: dict[int, Session] = {}
    for session in [*existing, *incoming]:
        merged[session.id] = session
    return list(merged.values())


class SessionRepository:
    """Reads and writes session history through a KeyValueStore."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def _read_json(self, key: str) -> Any:
        try:
            blob = await self._store.get(key)
        except Exception as exc:
            raise StorageError(f"reading {key!r} failed: {exc}") from exc
        if blob is None:
            return None
        try:
            return json.loads(blob)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageError(f"stored {key!r} is not valid JSON: {exc}") from exc

    async def _write_json(self, key: str, value: Any) -> None:
        blob = json.dumps(value, separators=(",", ":")).encode("utf-8")
        try:
            await self._store.set(key, blob)
        except Exception as exc:
            raise StorageError(f"writing {key!r} failed: {exc}") from exc

    async def _delete(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except Exception as exc:
            raise StorageError(f"deleting {key!r} failed: {exc}") from exc

    # ---- session history ----

    async def list_sessions(self) -> list[Session]:
        raw = await self._read_json(SESSIONS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise StorageError(f"stored {SESSIONS_KEY!r} is not a JSON array")
        sessions = []
        for record in raw:
            try:
                sessions.append(normalize_record(record, default_finish_line=False))
            except SessionImportError as exc:
                log.warning("stored_session_skipped", error=str(exc))
        return sessions

    async def _write_sessions(self, sessions: Iterable[Session]) -> None:
        await self._write_json(SESSIONS_KEY, [s.to_dict() for s in sessions])

    async def get_session(self, session_id: int) -> Session | None:
        for session in await self.list_sessions():
            if session.id == session_id:
                return session
        return None

    async def append_session(self, session: Session) -> None:
        sessions = merge_sessions(await self.list_sessions(), [session])
        await self._write_sessions(sessions)
        log.info("session_saved", session_id=session.id, laps=len(session.laps),
                 total_sessions=len(sessions))

    async def delete_session(self, session_id: int) -> bool:
        sessions = await self.list_sessions()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            return False
        await self._write_sessions(remaining)
        log.info("session_deleted", session_id=session_id)
        return True

    async def export_sessions(self) -> bytes:
        sessions = await self.list_sessions()
        return json.dumps([s.to_dict() for s in sessions], indent=2).encode("utf-8")

    async def import_sessions(self, payload: bytes | str | list) -> ImportResult:
        """Merge an exported payload into storage.

        The payload is fully validated before storage is read or written, so
        a bad payload leaves existing data untouched.
        """
        incoming = parse_import_payload(payload)
        merged = merge_sessions(await self.list_sessions(), incoming)
        await self._write_sessions(merged)
        log.info("sessions_imported", imported=len(incoming), total=len(merged))
        return ImportResult(imported=len(incoming), total=len(merged))

    # ---- in-progress snapshot ----

    async def save_current(self, session: Session) -> None:
        await self._write_json(CURRENT_SESSION_KEY, session.to_dict())

    async def load_current(self) -> Session | None:
        raw = await self._read_json(CURRENT_SESSION_KEY)
        if raw is None:
            return None
        try:
            return normalize_record(raw, default_finish_line=False)
        except SessionImportError as exc:
            raise StorageError(f"stored {CURRENT_SESSION_KEY!r} is unreadable: {exc}") from exc

    async def clear_current(self) -> None:
        await self._delete(CURRENT_SESSION_KEY)

    # ---- finish line ----

    async def load_finish_line(self) -> FinishLine | None:
        raw = await self._read_json(FINISH_LINE_KEY)
        if raw is None:
            return None
        try:
            return FinishLine.from_dict(raw)
        except InvalidFixError as exc:
            raise StorageError(f"stored {FINISH_LINE_KEY!r} is unreadable: {exc}") from exc

    async def save_finish_line(self, finish_line: FinishLine) -> None:
        await self._write_json(FINISH_LINE_KEY, finish_line.to_dict())
