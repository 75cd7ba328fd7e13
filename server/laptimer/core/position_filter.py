"""Position filter — rate-limits and de-duplicates the raw position feed.

Three rules apply to every raw fix:

1. Accept: processed only if at least ``min_interval_ms`` elapsed since the
   last processed fix.
2. Append: an accepted fix joins the track only if its rounded coordinates
   differ from the last appended fix (suppresses stationary jitter).
3. Speed: current speed is recomputed only between coordinate-distinct
   accepted fixes with a positive time delta; otherwise it holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from laptimer.core.geomath import round_coordinate, speed_kmh

if TYPE_CHECKING:
    from laptimer.core.models import Fix

# Accuracy reported when the device gives none.
UNKNOWN_ACCURACY_M = 100.0


@dataclass(frozen=True)
class FilterResult:
    accepted: bool
    appended: bool = False
    speed_updated: bool = False


REJECTED = FilterResult(accepted=False)


class PositionFilter:
    """Stateful gate between the raw position feed and the lap engine."""

    def __init__(self, min_interval_ms: int = 100, coordinate_decimals: int = 6) -> None:
        self._min_interval_ms = min_interval_ms
        self._decimals = coordinate_decimals
        self._last_processed: Fix | None = None
        self._last_appended: Fix | None = None
        self._speed_reference: Fix | None = None
        self.current_speed_kmh: float = 0.0

    @property
    def last_processed(self) -> Fix | None:
        return self._last_processed

    def _same_place(self, a: Fix, b: Fix) -> bool:
        return round_coordinate(a, self._decimals) == round_coordinate(b, self._decimals)

    def offer(self, fix: Fix) -> FilterResult:
        last = self._last_processed
        if last is not None and fix.timestamp_ms - last.timestamp_ms < self._min_interval_ms:
            return REJECTED
        self._last_processed = fix

        appended = self._last_appended is None or not self._same_place(self._last_appended, fix)
        if appended:
            self._last_appended = fix

        speed_updated = False
        ref = self._speed_reference
        if ref is None:
            self._speed_reference = fix
        elif not self._same_place(ref, fix) and fix.timestamp_ms > ref.timestamp_ms:
            self.current_speed_kmh = speed_kmh(ref, fix)
            self._speed_reference = fix
            speed_updated = True

        return FilterResult(accepted=True, appended=appended, speed_updated=speed_updated)


class AccuracyMonitor:
    """Tracks GPS accuracy while waiting for a fix good enough to start."""

    def __init__(self, required_accuracy_m: float = 10.0, min_interval_ms: int = 1000) -> None:
        self._required = required_accuracy_m
        self._filter = PositionFilter(min_interval_ms=min_interval_ms)
        self.accuracy_m: float | None = None
        self.last_fix: Fix | None = None

    @property
    def ready(self) -> bool:
        return self.accuracy_m is not None and self.accuracy_m < self._required

    def offer(self, fix: Fix) -> bool:
        """Record a fix if due and return the readiness after it."""
        if self._filter.offer(fix).accepted:
            self.accuracy_m = fix.accuracy_m or UNKNOWN_ACCURACY_M
            self.last_fix = fix
        return self.ready

    def snapshot(self) -> dict:
        return {
            "accuracy_m": round(self.accuracy_m, 2) if self.accuracy_m is not None else None,
            "required_accuracy_m": self._required,
            "ready": self.ready,
            "location": (
                {"latitude": self.last_fix.latitude, "longitude": self.last_fix.longitude}
                if self.last_fix else None
            ),
        }
