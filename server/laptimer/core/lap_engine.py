"""Lap engine — finish-line crossing detection and lap segmentation.

One engine instance owns the state of one tracking session: the position
filter, the overall track, the pre-start buffer, the open lap, and the
sealed laps. It is driven by accepted position fixes and an explicit
``stop()``; it never closes a lap on a timer.

A crossing is edge-triggered: it fires when the distance to the finish line
drops below ``proximity_threshold_m`` while the engine is armed. Firing
disarms the engine until either the distance exceeds ``rearm_distance_m``
or ``rearm_cooldown_ms`` has elapsed since the crossing.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from laptimer.core.geomath import distance_m
from laptimer.core.models import PRE_START_LAP_INDEX, Lap
from laptimer.core.position_filter import PositionFilter

if TYPE_CHECKING:
    from laptimer.core.models import FinishLine, Fix

log = structlog.get_logger()

DEFAULT_PROXIMITY_THRESHOLD_M = 4.0
DEFAULT_REARM_DISTANCE_M = 50.0
DEFAULT_REARM_COOLDOWN_MS = 10_000


class EngineState(str, enum.Enum):
    AWAITING_FIRST_CROSSING = "awaiting_first_crossing"
    LAP_IN_PROGRESS = "lap_in_progress"
    STOPPED = "stopped"


@dataclass(frozen=True)
class LapEvent:
    """Emitted when a crossing fires.

    ``completed`` is the lap the crossing sealed (None for the first
    crossing); ``opened_lap_number`` is the lap that starts at ``time_ms``.
    """
    time_ms: int
    opened_lap_number: int
    completed: Lap | None = None


@dataclass(frozen=True)
class LiveSnapshot:
    state: EngineState
    current_speed_kmh: float
    lap_number: int
    elapsed_ms: int
    last_lap_ms: int | None
    best_lap_ms: int | None
    distance_to_finish_m: float | None
    laps_completed: int

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "current_speed_kmh": self.current_speed_kmh,
            "lap_number": self.lap_number,
            "elapsed_ms": self.elapsed_ms,
            "last_lap_ms": self.last_lap_ms,
            "best_lap_ms": self.best_lap_ms,
            "distance_to_finish_m": (
                round(self.distance_to_finish_m, 1)
                if self.distance_to_finish_m is not None else None
            ),
            "laps_completed": self.laps_completed,
        }


class LapEngine:
    """State machine: AWAITING_FIRST_CROSSING -> LAP_IN_PROGRESS -> STOPPED."""

    def __init__(
        self,
        finish_line: FinishLine | None,
        *,
        proximity_threshold_m: float = DEFAULT_PROXIMITY_THRESHOLD_M,
        rearm_distance_m: float = DEFAULT_REARM_DISTANCE_M,
        rearm_cooldown_ms: int = DEFAULT_REARM_COOLDOWN_MS,
        position_filter: PositionFilter | None = None,
    ) -> None:
        self.finish_line = finish_line
        self._proximity_m = proximity_threshold_m
        self._rearm_distance_m = rearm_distance_m
        self._rearm_cooldown_ms = rearm_cooldown_ms
        self._filter = position_filter or PositionFilter()
        self.processed_count = 0

        self.state = EngineState.AWAITING_FIRST_CROSSING
        self._can_cross = True
        self._last_crossing_ms: int | None = None
        self._distance_to_finish_m: float | None = None

        self._track: list[Fix] = []
        self._laps: list[Lap] = []
        self._lap_number = 0
        self._lap_start_ms: int | None = None
        self._lap_track: list[Fix] = []

        self._last_lap_ms: int | None = None
        self._best_lap_ms: int | None = None

    # -- read-only views -----------------------------------------------------

    @property
    def active(self) -> bool:
        return self.state is not EngineState.STOPPED

    @property
    def can_cross(self) -> bool:
        return self._can_cross

    @property
    def track(self) -> tuple[Fix, ...]:
        return tuple(self._track)

    @property
    def laps(self) -> tuple[Lap, ...]:
        return tuple(self._laps)

    @property
    def current_lap_number(self) -> int:
        return self._lap_number

    @property
    def current_speed_kmh(self) -> float:
        return self._filter.current_speed_kmh

    @property
    def last_lap_ms(self) -> int | None:
        return self._last_lap_ms

    @property
    def best_lap_ms(self) -> int | None:
        return self._best_lap_ms

    def elapsed_ms(self, now_ms: int) -> int:
        """Time since the open lap started, for live display."""
        if self.state is not EngineState.LAP_IN_PROGRESS or self._lap_start_ms is None:
            return 0
        return max(0, now_ms - self._lap_start_ms)

    def snapshot(self, now_ms: int) -> LiveSnapshot:
        return LiveSnapshot(
            state=self.state,
            current_speed_kmh=round(self.current_speed_kmh, 1),
            lap_number=self._lap_number,
            elapsed_ms=self.elapsed_ms(now_ms),
            last_lap_ms=self._last_lap_ms,
            best_lap_ms=self._best_lap_ms,
            distance_to_finish_m=self._distance_to_finish_m,
            laps_completed=len(self._laps),
        )

    # -- inputs --------------------------------------------------------------

    def push(self, fix: Fix) -> LapEvent | None:
        """Feed one raw fix. Returns a LapEvent if it triggered a crossing."""
        if not self.active:
            log.debug("fix_ignored_after_stop", timestamp_ms=fix.timestamp_ms)
            return None

        result = self._filter.offer(fix)
        if not result.accepted:
            return None
        self.processed_count += 1

        event = None
        if self.finish_line is not None:
            event = self._check_crossing(fix)

        if result.appended:
            if self.state is EngineState.LAP_IN_PROGRESS:
                tagged = fix.in_lap(self._lap_number - 1)
                self._lap_track.append(tagged)
            else:
                tagged = fix.in_lap(PRE_START_LAP_INDEX)
            self._track.append(tagged)

        return event

    def stop(self, now_ms: int | None = None) -> tuple[Lap, ...]:
        """Seal the open lap as a deceleration lap and stop. Idempotent."""
        if self.state is EngineState.STOPPED:
            return self.laps

        if self.state is EngineState.LAP_IN_PROGRESS and self._lap_track:
            if now_ms is None:
                last = self._filter.last_processed
                now_ms = last.timestamp_ms if last else self._lap_track[-1].timestamp_ms
            self._seal_lap(now_ms, deceleration=True)

        self.state = EngineState.STOPPED
        self._lap_start_ms = None
        self._lap_track = []
        log.info("lap_engine_stopped", laps=len(self._laps), track_points=len(self._track))
        return self.laps

    # -- internals -----------------------------------------------------------

    def _check_crossing(self, fix: Fix) -> LapEvent | None:
        dist = distance_m(fix, self.finish_line)
        self._distance_to_finish_m = dist

        if not self._can_cross:
            cooled = (
                self._last_crossing_ms is not None
                and fix.timestamp_ms - self._last_crossing_ms >= self._rearm_cooldown_ms
            )
            if dist > self._rearm_distance_m or cooled:
                self._can_cross = True
                log.debug("crossing_rearmed", distance_m=round(dist, 1), by_cooldown=cooled)

        if not (self._can_cross and dist < self._proximity_m):
            return None

        self._can_cross = False
        self._last_crossing_ms = fix.timestamp_ms
        now = fix.timestamp_ms

        if self.state is EngineState.AWAITING_FIRST_CROSSING:
            self.state = EngineState.LAP_IN_PROGRESS
            self._lap_number = 1
            self._lap_start_ms = now
            # Lap 1 is seeded with everything recorded while waiting.
            self._lap_track = list(self._track)
            log.info("first_crossing", timestamp_ms=now, distance_m=round(dist, 1),
                     pre_start_points=len(self._lap_track))
            return LapEvent(time_ms=now, opened_lap_number=1)

        completed = self._seal_lap(now, deceleration=False)
        self._lap_number += 1
        self._lap_start_ms = now
        self._lap_track = []
        return LapEvent(time_ms=now, opened_lap_number=self._lap_number, completed=completed)

    def _seal_lap(self, end_ms: int, *, deceleration: bool) -> Lap:
        lap = Lap(
            lap_number=self._lap_number,
            start_time_ms=self._lap_start_ms,
            end_time_ms=max(end_ms, self._lap_start_ms),
            track=tuple(self._lap_track),
            is_deceleration_lap=deceleration,
        )
        self._laps.append(lap)
        if not deceleration:
            self._last_lap_ms = lap.duration_ms
            if self._best_lap_ms is None or lap.duration_ms < self._best_lap_ms:
                self._best_lap_ms = lap.duration_ms
        log.info("lap_sealed", lap_number=lap.lap_number, duration_ms=lap.duration_ms,
                 points=len(lap.track), deceleration=deceleration)
        return lap
