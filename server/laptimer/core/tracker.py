"""Tracking service — runs one live session at a time.

Owns the LapEngine for the current session, feeds it parsed fixes, and
calls the session repository at lap close (in-progress snapshot) and at
stop (final save). Storage failures are logged and counted; they never
touch in-memory lap state.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import structlog

from laptimer.core.errors import (
    InvalidFixError,
    NoActiveSessionError,
    SessionAlreadyActiveError,
    StorageError,
)
from laptimer.core.lap_engine import LapEngine
from laptimer.core.models import Fix, Session
from laptimer.core.position_filter import AccuracyMonitor, PositionFilter

if TYPE_CHECKING:
    from laptimer.config import TrackingConfig
    from laptimer.core.lap_engine import LapEvent
    from laptimer.core.models import FinishLine
    from laptimer.core.sessions import SessionRepository
    from laptimer.core.stats import TrackerStats

log = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


def iso_date(timestamp_ms: int) -> str:
    """ISO-8601 UTC date with millisecond precision and a Z suffix."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TrackingService:
    """Host-side orchestration of the lap engine and its persistence."""

    def __init__(
        self,
        repository: SessionRepository,
        stats: TrackerStats,
        config: TrackingConfig,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._repository = repository
        self._stats = stats
        self._config = config
        self._clock = clock
        self._engine: LapEngine | None = None
        self._session_id = 0
        self._session_name: str | None = None
        self._last_session_id = 0
        self._accuracy = self._new_accuracy_monitor()
        self.last_session: Session | None = None

    @property
    def active(self) -> bool:
        return self._engine is not None and self._engine.active

    @property
    def engine(self) -> LapEngine | None:
        return self._engine

    def _new_accuracy_monitor(self) -> AccuracyMonitor:
        return AccuracyMonitor(
            required_accuracy_m=self._config.required_accuracy_m,
            min_interval_ms=self._config.accuracy_wait_interval_ms,
        )

    def _new_engine(self, finish_line: FinishLine | None) -> LapEngine:
        cfg = self._config
        return LapEngine(
            finish_line,
            proximity_threshold_m=cfg.proximity_threshold_m,
            rearm_distance_m=cfg.rearm_distance_m,
            rearm_cooldown_ms=cfg.rearm_cooldown_ms,
            position_filter=PositionFilter(
                min_interval_ms=cfg.min_interval_ms,
                coordinate_decimals=cfg.coordinate_decimals,
            ),
        )

    def _storage_failed(self, event: str, exc: StorageError) -> None:
        log.warning(event, error=str(exc), session_id=self._session_id)
        self._stats.record_storage_error(str(exc))

    # ---- pre-session GPS wait ----

    def offer_accuracy(self, fix: Fix) -> dict:
        self._accuracy.offer(fix)
        return self._accuracy.snapshot()

    # ---- lifecycle ----

    async def start(
        self,
        finish_line: FinishLine | None = None,
        session_name: str | None = None,
    ) -> dict:
        """Open a new session. Without a finish line, the stored one is used."""
        if self.active:
            raise SessionAlreadyActiveError(f"session {self._session_id} is still active")

        if finish_line is None:
            try:
                finish_line = await self._repository.load_finish_line()
            except StorageError as exc:
                self._storage_failed("finish_line_load_failed", exc)
        else:
            try:
                await self._repository.save_finish_line(finish_line)
            except StorageError as exc:
                self._storage_failed("finish_line_save_failed", exc)

        # Provisional id for logs and lap snapshots; stop() assigns the final one.
        session_id = self._clock()
        self._session_id = session_id
        self._session_name = session_name.strip() if session_name and session_name.strip() else None
        self._engine = self._new_engine(finish_line)
        self._accuracy = self._new_accuracy_monitor()
        self._stats.record_session_started()

        if finish_line is None:
            log.warning("session_started_without_finish_line", session_id=session_id)
        else:
            log.info("session_started", session_id=session_id, name=self._session_name,
                     finish_lat=finish_line.latitude, finish_lon=finish_line.longitude)
        return self._session_info()

    def _session_info(self) -> dict:
        engine = self._engine
        return {
            "session_id": self._session_id,
            "session_name": self._session_name,
            "finish_line": engine.finish_line.to_dict() if engine and engine.finish_line else None,
            "state": engine.state.value if engine else None,
        }

    def _build_session(self, engine: LapEngine, session_id: int | None = None) -> Session:
        if session_id is None:
            session_id = self._session_id
        return Session(
            id=session_id,
            date=iso_date(session_id),
            session_name=self._session_name,
            finish_line=engine.finish_line,
            track=engine.track,
            laps=engine.laps,
        )

    async def push_raw(self, raw: dict) -> LapEvent | None:
        """Parse and feed one raw position record. Malformed records are skipped."""
        self._stats.record_received()
        try:
            fix = Fix.from_dict(raw)
        except InvalidFixError as exc:
            self._stats.record_rejected()
            log.warning("fix_rejected", error=str(exc))
            return None
        return await self._push(fix)

    async def push(self, fix: Fix) -> LapEvent | None:
        self._stats.record_received()
        return await self._push(fix)

    async def _push(self, fix: Fix) -> LapEvent | None:
        engine = self._engine
        if engine is None or not engine.active:
            self._stats.record_ignored()
            return None

        points_before = len(engine.track)
        processed_before = engine.processed_count
        event = engine.push(fix)
        self._stats.record_track_growth(
            accepted=engine.processed_count - processed_before,
            appended=len(engine.track) - points_before,
        )

        if event is not None:
            self._stats.record_crossing(lap_completed=event.completed is not None)
            if event.completed is not None:
                await self._save_snapshot(engine)
        return event

    async def _save_snapshot(self, engine: LapEngine) -> None:
        try:
            await self._repository.save_current(self._build_session(engine))
        except StorageError as exc:
            self._storage_failed("snapshot_save_failed", exc)
        else:
            log.debug("snapshot_saved", session_id=self._session_id, laps=len(engine.laps))

    async def stop(self, now_ms: int | None = None) -> Session:
        """Finalize the live session and hand it to storage."""
        engine = self._engine
        if engine is None:
            raise NoActiveSessionError("no session is being tracked")

        # Stopping the engine first makes any fix still in flight a no-op.
        engine.stop(now_ms)
        self._engine = None
        # The session is created at stop; ids stay strictly increasing.
        session_id = max(self._clock(), self._last_session_id + 1)
        self._last_session_id = session_id
        self._session_id = session_id
        session = self._build_session(engine, session_id)
        self.last_session = session

        try:
            await self._repository.append_session(session)
        except StorageError as exc:
            self._storage_failed("session_save_failed", exc)
        else:
            self._stats.record_session_saved()
            try:
                await self._repository.clear_current()
            except StorageError as exc:
                self._storage_failed("snapshot_clear_failed", exc)

        best = session.fastest_lap
        log.info("session_stopped", session_id=session.id, laps=len(session.laps),
                 track_points=len(session.track),
                 fastest_lap_ms=best.duration_ms if best else None)
        return session

    def live(self, now_ms: int | None = None) -> dict:
        """Live display values for the running session."""
        engine = self._engine
        if engine is None:
            raise NoActiveSessionError("no session is being tracked")
        snapshot = engine.snapshot(self._clock() if now_ms is None else now_ms)
        return {**self._session_info(), **snapshot.to_dict()}

    async def recover(self) -> Session | None:
        """The last in-progress snapshot, if a session was never stopped."""
        return await self._repository.load_current()
