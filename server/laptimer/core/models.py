"""Lap timer — core internal data models.

These are plain dataclasses with no framework dependencies. JSON records
(camelCase, as stored on the device and exchanged on export) are converted
to/from these at the boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

from laptimer.core.aggregator import fastest_lap
from laptimer.core.errors import InvalidFixError

# lap_index of fixes recorded before the first finish-line crossing.
PRE_START_LAP_INDEX = -1


def _required_float(data: dict, key: str) -> float:
    if key not in data or data[key] is None:
        raise InvalidFixError(f"missing field {key!r}")
    try:
        value = float(data[key])
    except (TypeError, ValueError, OverflowError):
        raise InvalidFixError(f"field {key!r} is not a number: {data[key]!r}") from None
    if not math.isfinite(value):
        raise InvalidFixError(f"field {key!r} is not finite")
    return value


def _optional_float(data: dict, key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if math.isfinite(value) else None


def _optional_int(data: dict, key: str) -> int | None:
    value = _optional_float(data, key)
    return int(value) if value is not None else None


def _int_field(data: dict, key: str, default: int = 0) -> int:
    if data.get(key) is None:
        return default
    return int(_required_float(data, key))


@dataclass(frozen=True)
class Fix:
    latitude: float
    longitude: float
    timestamp_ms: int
    accuracy_m: float | None = None
    altitude_m: float | None = None
    lap_index: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Fix:
        """Parse a position record, raising InvalidFixError if unusable."""
        if not isinstance(data, dict):
            raise InvalidFixError("position must be a JSON object")
        lat = _required_float(data, "latitude")
        lon = _required_float(data, "longitude")
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise InvalidFixError(f"coordinates out of range: {lat}, {lon}")
        timestamp = _required_float(data, "timestamp")
        return cls(
            latitude=lat,
            longitude=lon,
            timestamp_ms=int(timestamp),
            accuracy_m=_optional_float(data, "accuracy"),
            altitude_m=_optional_float(data, "altitude"),
            lap_index=_optional_int(data, "lapIndex"),
        )

    def to_dict(self) -> dict:
        data = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp_ms,
        }
        if self.accuracy_m is not None:
            data["accuracy"] = self.accuracy_m
        if self.altitude_m is not None:
            data["altitude"] = self.altitude_m
        if self.lap_index is not None:
            data["lapIndex"] = self.lap_index
        return data

    def in_lap(self, lap_index: int) -> Fix:
        return replace(self, lap_index=lap_index)


@dataclass(frozen=True)
class FinishLine:
    latitude: float
    longitude: float

    @classmethod
    def from_dict(cls, data: dict) -> FinishLine:
        if not isinstance(data, dict):
            raise InvalidFixError("finish line must be a JSON object")
        lat = _required_float(data, "latitude")
        lon = _required_float(data, "longitude")
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise InvalidFixError(f"coordinates out of range: {lat}, {lon}")
        return cls(latitude=lat, longitude=lon)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class Lap:
    lap_number: int
    start_time_ms: int
    end_time_ms: int
    track: tuple[Fix, ...] = ()
    is_deceleration_lap: bool = False

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms

    @classmethod
    def from_dict(cls, data: dict) -> Lap:
        return cls(
            lap_number=_int_field(data, "lapNumber"),
            start_time_ms=_int_field(data, "startTime"),
            end_time_ms=_int_field(data, "endTime"),
            track=tuple(Fix.from_dict(p) for p in data.get("track") or []),
            # Only a real JSON true marks a deceleration lap.
            is_deceleration_lap=data.get("isDecelerationLap") is True,
        )

    def to_dict(self) -> dict:
        return {
            "lapNumber": self.lap_number,
            "startTime": self.start_time_ms,
            "endTime": self.end_time_ms,
            "duration": self.duration_ms,
            "track": [p.to_dict() for p in self.track],
            "isDecelerationLap": self.is_deceleration_lap,
        }


@dataclass(frozen=True)
class Session:
    id: int
    date: str
    session_name: str | None = None
    finish_line: FinishLine | None = None
    track: tuple[Fix, ...] = ()
    laps: tuple[Lap, ...] = field(default_factory=tuple)

    @property
    def fastest_lap(self) -> Lap | None:
        return fastest_lap(self.laps)

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        """Parse a stored session record. Derived fields are recomputed."""
        finish = data.get("finishLine")
        return cls(
            id=int(data["id"]),
            date=str(data["date"]),
            session_name=data.get("sessionName"),
            finish_line=FinishLine.from_dict(finish) if finish else None,
            track=tuple(Fix.from_dict(p) for p in data.get("track") or []),
            laps=tuple(Lap.from_dict(lap) for lap in data.get("laps") or []),
        )

    def to_dict(self) -> dict:
        best = self.fastest_lap
        return {
            "id": self.id,
            "date": self.date,
            "sessionName": self.session_name,
            "finishLine": self.finish_line.to_dict() if self.finish_line else None,
            "track": [p.to_dict() for p in self.track],
            "laps": [lap.to_dict() for lap in self.laps],
            "fastestLap": best.to_dict() if best else None,
        }
