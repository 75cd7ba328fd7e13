"""Tracker statistics.

In-memory counters for the position feed, laps, and storage health.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class TrackerStats:
    """Thread-safe counters exposed on the monitoring endpoint.

    A fix is counted once as ``received`` and then lands in exactly one of
    ``rejected`` (malformed), ``ignored`` (no active session), or is handed
    to the engine; of those, ``accepted``/``appended`` follow the position
    filter's rules.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        self.fixes_received: int = 0
        self.fixes_rejected: int = 0
        self.fixes_ignored: int = 0
        self.fixes_accepted: int = 0
        self.fixes_appended: int = 0
        self.crossings: int = 0
        self.laps_completed: int = 0
        self.sessions_started: int = 0
        self.sessions_saved: int = 0
        self.storage_errors: int = 0
        self.last_storage_error: str = ""

    def record_received(self, count: int = 1) -> None:
        with self._lock:
            self.fixes_received += count

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.fixes_rejected += count

    def record_ignored(self, count: int = 1) -> None:
        with self._lock:
            self.fixes_ignored += count

    def record_track_growth(self, accepted: int, appended: int) -> None:
        with self._lock:
            self.fixes_accepted += accepted
            self.fixes_appended += appended

    def record_crossing(self, lap_completed: bool) -> None:
        with self._lock:
            self.crossings += 1
            if lap_completed:
                self.laps_completed += 1

    def record_session_started(self) -> None:
        with self._lock:
            self.sessions_started += 1

    def record_session_saved(self) -> None:
        with self._lock:
            self.sessions_saved += 1

    def record_storage_error(self, message: str = "") -> None:
        with self._lock:
            self.storage_errors += 1
            self.last_storage_error = message

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "fixes": {
                    "received": self.fixes_received,
                    "rejected": self.fixes_rejected,
                    "ignored": self.fixes_ignored,
                    "accepted": self.fixes_accepted,
                    "appended": self.fixes_appended,
                },
                "crossings": self.crossings,
                "laps_completed": self.laps_completed,
                "sessions_started": self.sessions_started,
                "sessions_saved": self.sessions_saved,
                "storage_errors": self.storage_errors,
                "last_storage_error": self.last_storage_error,
            }
