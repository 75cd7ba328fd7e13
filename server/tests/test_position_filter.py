"""Tests for the position filter's accept, append, and speed rules."""

from __future__ import annotations

import pytest

from laptimer.core.models import Fix
from laptimer.core.position_filter import AccuracyMonitor, PositionFilter


def test_first_fix_accepted_and_appended():
    pf = PositionFilter()
    result = pf.offer(Fix(0.0, 0.0, 1_000))
    assert result.accepted
    assert result.appended
    assert not result.speed_updated
    assert pf.current_speed_kmh == 0.0


def test_rate_limit_rejects_fix_inside_interval():
    pf = PositionFilter(min_interval_ms=100)
    pf.offer(Fix(0.0, 0.0, 1_000))
    assert not pf.offer(Fix(0.0, 0.0001, 1_050)).accepted
    assert pf.offer(Fix(0.0, 0.0001, 1_100)).accepted


def test_rate_limit_measured_from_last_processed_fix():
    pf = PositionFilter(min_interval_ms=1000)
    pf.offer(Fix(0.0, 0.0, 0))
    assert not pf.offer(Fix(0.0, 0.0001, 600)).accepted
    # 1200 is 1200 ms after the last *processed* fix, not after the rejected one.
    assert pf.offer(Fix(0.0, 0.0002, 1_200)).accepted


def test_out_of_order_fix_is_skipped():
    pf = PositionFilter()
    pf.offer(Fix(0.0, 0.0, 5_000))
    assert not pf.offer(Fix(0.0, 0.001, 4_000)).accepted
    assert pf.current_speed_kmh == 0.0


def test_stationary_jitter_not_appended():
    pf = PositionFilter()
    pf.offer(Fix(10.0, 20.0, 0))
    result = pf.offer(Fix(10.0000001, 20.0000002, 1_000))
    assert result.accepted
    assert not result.appended


def test_speed_holds_between_identical_coordinates():
    pf = PositionFilter()
    pf.offer(Fix(0.0, 0.0, 0))
    pf.offer(Fix(0.0, 0.0001, 10_000))
    assert pf.current_speed_kmh == pytest.approx(4.0, abs=0.01)

    result = pf.offer(Fix(0.0, 0.0001, 20_000))
    assert not result.speed_updated
    assert pf.current_speed_kmh == pytest.approx(4.0, abs=0.01)


def test_speed_measured_from_last_distinct_fix():
    pf = PositionFilter()
    pf.offer(Fix(0.0, 0.0, 0))
    pf.offer(Fix(0.0, 0.0, 5_000))  # same place, reference stays at t=0
    result = pf.offer(Fix(0.0, 0.0001, 10_000))
    assert result.speed_updated
    assert pf.current_speed_kmh == pytest.approx(4.0, abs=0.01)


def test_accuracy_monitor_ready_below_threshold():
    monitor = AccuracyMonitor(required_accuracy_m=10.0, min_interval_ms=1000)
    assert not monitor.ready
    assert not monitor.offer(Fix(0.0, 0.0, 0, accuracy_m=25.0))
    # Too soon: ignored even though it is accurate.
    assert not monitor.offer(Fix(0.0, 0.0, 500, accuracy_m=3.0))
    assert monitor.offer(Fix(0.0, 0.0, 1_000, accuracy_m=3.0))
    assert monitor.snapshot()["accuracy_m"] == 3.0


def test_accuracy_monitor_missing_accuracy_counts_as_poor():
    monitor = AccuracyMonitor()
    assert not monitor.offer(Fix(0.0, 0.0, 0))
    assert monitor.accuracy_m == 100.0
    assert monitor.snapshot()["location"] == {"latitude": 0.0, "longitude": 0.0}
