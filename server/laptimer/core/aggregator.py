"""Session aggregation — statistics and display views derived from a track.

Stateless: everything here is recomputed from a finalized track (or a
snapshot of an in-progress one) and is never persisted as primary data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Sequence

from laptimer.core.geomath import distance_m, rgb_hex, speed_color, speed_kmh

if TYPE_CHECKING:
    from laptimer.core.models import Fix, Lap

# Map framing: padding factor added on each axis, and smallest span in degrees.
REGION_PADDING = 0.5
REGION_MIN_SPAN_DEG = 0.01


@dataclass(frozen=True)
class TrackSummary:
    point_count: int = 0
    distance_m: float = 0.0
    duration_s: float = 0.0
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0

    def to_dict(self) -> dict:
        return {
            "point_count": self.point_count,
            "distance_m": round(self.distance_m, 1),
            "duration_s": round(self.duration_s, 3),
            "avg_speed_kmh": round(self.avg_speed_kmh, 1),
            "max_speed_kmh": round(self.max_speed_kmh, 1),
        }


@dataclass(frozen=True)
class SpeedSegment:
    start: tuple[float, float]
    end: tuple[float, float]
    speed_kmh: float
    color: tuple[int, int, int]

    def to_dict(self) -> dict:
        return {
            "coordinates": [
                {"latitude": self.start[0], "longitude": self.start[1]},
                {"latitude": self.end[0], "longitude": self.end[1]},
            ],
            "speed_kmh": round(self.speed_kmh, 1),
            "color": rgb_hex(self.color),
        }


@dataclass(frozen=True)
class MapRegion:
    latitude: float
    longitude: float
    latitude_delta: float
    longitude_delta: float

    def to_dict(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "latitudeDelta": self.latitude_delta,
            "longitudeDelta": self.longitude_delta,
        }


def pair_speeds(track: Sequence[Fix]) -> list[float]:
    """Speed of each consecutive pair with a positive time delta."""
    return [
        speed_kmh(p0, p1)
        for p0, p1 in zip(track, track[1:])
        if p1.timestamp_ms - p0.timestamp_ms > 0
    ]


def summarize_track(track: Sequence[Fix]) -> TrackSummary:
    """Distance, duration and average/max speed of a track."""
    if not track:
        return TrackSummary()

    distance = sum(distance_m(p0, p1) for p0, p1 in zip(track, track[1:]))
    duration = (track[-1].timestamp_ms - track[0].timestamp_ms) / 1000
    speeds = pair_speeds(track)

    return TrackSummary(
        point_count=len(track),
        distance_m=distance,
        duration_s=duration,
        avg_speed_kmh=sum(speeds) / len(speeds) if speeds else 0.0,
        max_speed_kmh=max(speeds) if speeds else 0.0,
    )


def fastest_lap(laps: Iterable[Lap]) -> Lap | None:
    """Shortest lap that closed at a crossing (deceleration laps excluded)."""
    candidates = [lap for lap in laps if not lap.is_deceleration_lap]
    if not candidates:
        return None
    return min(candidates, key=lambda lap: lap.duration_ms)


def summarize_laps(laps: Iterable[Lap]) -> list[dict]:
    """Per-lap timing plus track statistics, for the session detail view."""
    laps = list(laps)
    best = fastest_lap(laps)
    rows = []
    for lap in laps:
        summary = summarize_track(lap.track)
        rows.append({
            "lap_number": lap.lap_number,
            "duration_ms": lap.duration_ms,
            "is_deceleration_lap": lap.is_deceleration_lap,
            "is_fastest": best is not None and lap is best,
            **summary.to_dict(),
        })
    return rows


def speed_segments(track: Sequence[Fix], max_speed_kmh: float | None = None) -> list[SpeedSegment]:
    """One colored segment per consecutive pair of fixes."""
    if max_speed_kmh is None:
        max_speed_kmh = summarize_track(track).max_speed_kmh
    segments = []
    for p0, p1 in zip(track, track[1:]):
        speed = speed_kmh(p0, p1)
        segments.append(SpeedSegment(
            start=(p0.latitude, p0.longitude),
            end=(p1.latitude, p1.longitude),
            speed_kmh=speed,
            color=speed_color(speed, max_speed_kmh),
        ))
    return segments


def bounding_region(
    track: Sequence[Fix],
    padding: float = REGION_PADDING,
    min_span_deg: float = REGION_MIN_SPAN_DEG,
) -> MapRegion | None:
    """Region framing the whole track, or None for an empty track."""
    if not track:
        return None
    lats = [p.latitude for p in track]
    lons = [p.longitude for p in track]
    min_lat, max_lat = min(lats), max(lats)
    min_lon, max_lon = min(lons), max(lons)
    return MapRegion(
        latitude=(min_lat + max_lat) / 2,
        longitude=(min_lon + max_lon) / 2,
        latitude_delta=max((max_lat - min_lat) * (1 + padding), min_span_deg),
        longitude_delta=max((max_lon - min_lon) * (1 + padding), min_span_deg),
    )


def session_view(track: Sequence[Fix], laps: Sequence[Lap]) -> dict:
    """Everything a session detail screen renders, in one JSON-ready dict."""
    summary = summarize_track(track)
    best = fastest_lap(laps)
    region = bounding_region(track)
    return {
        "summary": summary.to_dict(),
        "fastest_lap": (
            {"lap_number": best.lap_number, "duration_ms": best.duration_ms}
            if best else None
        ),
        "laps": summarize_laps(laps),
        "segments": [s.to_dict() for s in speed_segments(track, summary.max_speed_kmh)],
        "region": region.to_dict() if region else None,
    }
