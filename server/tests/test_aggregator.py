"""Tests for session aggregation and display views."""

from __future__ import annotations

import pytest

from laptimer.core.aggregator import (
    bounding_region,
    fastest_lap,
    pair_speeds,
    session_view,
    speed_segments,
    summarize_laps,
    summarize_track,
)
from laptimer.core.models import Fix, Lap


def _lap(number: int, start: int, end: int, deceleration: bool = False) -> Lap:
    return Lap(lap_number=number, start_time_ms=start, end_time_ms=end,
               is_deceleration_lap=deceleration)


def test_empty_track_is_all_zeros():
    summary = summarize_track([])
    assert summary.distance_m == 0
    assert summary.avg_speed_kmh == 0
    assert summary.max_speed_kmh == 0
    assert summary.duration_s == 0
    assert summary.point_count == 0


def test_single_point_track():
    summary = summarize_track([Fix(1.0, 2.0, 5_000)])
    assert summary.point_count == 1
    assert summary.distance_m == 0
    assert summary.max_speed_kmh == 0


def test_two_point_track():
    summary = summarize_track([Fix(0.0, 0.0, 0), Fix(0.0, 0.0001, 10_000)])
    assert summary.distance_m == pytest.approx(11.12, abs=0.01)
    assert summary.duration_s == 10.0
    assert summary.avg_speed_kmh == pytest.approx(4.0, abs=0.01)
    assert summary.max_speed_kmh == pytest.approx(4.0, abs=0.01)


def test_non_positive_time_deltas_excluded_from_speeds():
    track = [
        Fix(0.0, 0.0, 0),
        Fix(0.0, 0.0001, 10_000),
        Fix(0.0, 0.0002, 10_000),   # same timestamp: excluded
        Fix(0.0, 0.0003, 20_000),
    ]
    speeds = pair_speeds(track)
    assert len(speeds) == 2
    summary = summarize_track(track)
    assert summary.avg_speed_kmh == pytest.approx(sum(speeds) / 2)
    # Distance still covers every pair.
    assert summary.distance_m == pytest.approx(3 * 11.12, abs=0.05)


def test_fastest_lap_skips_deceleration_laps():
    laps = [
        _lap(1, 0, 60_000),
        _lap(2, 60_000, 110_000),
        _lap(3, 110_000, 115_000, deceleration=True),
    ]
    best = fastest_lap(laps)
    assert best.lap_number == 2
    assert not best.is_deceleration_lap
    assert all(best.duration_ms <= lap.duration_ms
               for lap in laps if not lap.is_deceleration_lap)


def test_fastest_lap_none_without_completed_laps():
    assert fastest_lap([]) is None
    assert fastest_lap([_lap(1, 0, 1_000, deceleration=True)]) is None


def test_speed_segments_one_per_pair():
    track = [
        Fix(0.0, 0.0, 0),
        Fix(0.0, 0.0001, 10_000),   # ~4 km/h
        Fix(0.0, 0.0003, 20_000),   # ~8 km/h, the maximum
    ]
    segments = speed_segments(track)
    assert len(segments) == 2
    assert segments[1].color == (255, 0, 0)
    assert segments[0].color[0] == pytest.approx(128, abs=1)
    assert segments[0].start == (0.0, 0.0)
    assert segments[0].end == (0.0, 0.0001)
    assert segments[1].to_dict()["color"] == "#ff0000"


def test_speed_segments_empty_for_short_tracks():
    assert speed_segments([]) == []
    assert speed_segments([Fix(0.0, 0.0, 0)]) == []


def test_bounding_region_padding():
    track = [Fix(10.0, 20.0, 0), Fix(10.2, 20.4, 1_000)]
    region = bounding_region(track)
    assert region.latitude == pytest.approx(10.1)
    assert region.longitude == pytest.approx(20.2)
    assert region.latitude_delta == pytest.approx(0.3)
    assert region.longitude_delta == pytest.approx(0.6)


def test_bounding_region_minimum_span():
    region = bounding_region([Fix(10.0, 20.0, 0), Fix(10.0001, 20.0, 1_000)])
    assert region.latitude_delta == 0.01
    assert region.longitude_delta == 0.01


def test_bounding_region_empty_track():
    assert bounding_region([]) is None


def test_summarize_laps_marks_fastest():
    laps = [
        Lap(1, 0, 20_000, track=(Fix(0.0, 0.0, 0), Fix(0.0, 0.0001, 10_000))),
        Lap(2, 20_000, 35_000),
        Lap(3, 35_000, 36_000, is_deceleration_lap=True),
    ]
    rows = summarize_laps(laps)
    assert [r["is_fastest"] for r in rows] == [False, True, False]
    assert rows[0]["distance_m"] == pytest.approx(11.1, abs=0.1)
    assert rows[1]["point_count"] == 0


def test_session_view_shape():
    track = [Fix(0.0, 0.0, 0), Fix(0.0, 0.0001, 10_000)]
    view = session_view(track, [Lap(1, 0, 10_000, track=tuple(track))])
    assert set(view) == {"summary", "fastest_lap", "laps", "segments", "region"}
    assert view["fastest_lap"] == {"lap_number": 1, "duration_ms": 10_000}
    assert len(view["segments"]) == 1
    assert view["region"]["latitudeDelta"] == 0.01


def test_session_view_empty():
    view = session_view([], [])
    assert view["summary"]["distance_m"] == 0
    assert view["fastest_lap"] is None
    assert view["segments"] == []
    assert view["region"] is None
