"""Tests for the session repository: history, import/export, finish line."""

from __future__ import annotations

import json

import pytest

from laptimer.core.errors import SessionImportError, StorageError
from laptimer.core.models import FinishLine, Fix, Lap, Session
from laptimer.core.sessions import (
    SessionRepository,
    default_session_name,
    merge_sessions,
    normalize_record,
    parse_import_payload,
)
from laptimer.storage.memory_storage import InMemoryKeyValueStore


class FailingStore:
    """KeyValueStore whose every call fails like an unavailable disk."""

    async def get(self, key):
        raise OSError("disk unavailable")

    async def set(self, key, value):
        raise OSError("disk unavailable")

    async def delete(self, key):
        raise OSError("disk unavailable")


def _record(session_id: int, **overrides) -> dict:
    record = {
        "id": session_id,
        "date": "2025-03-01T14:30:00.000Z",
        "sessionName": f"Treino {session_id}",
        "finishLine": {"latitude": -23.7, "longitude": -46.69},
        "track": [
            {"latitude": -23.7001, "longitude": -46.69, "timestamp": 1_000},
            {"latitude": -23.7002, "longitude": -46.69, "timestamp": 2_000},
        ],
        "laps": [
            {"lapNumber": 1, "startTime": 1_000, "endTime": 61_000, "track": []},
            {"lapNumber": 2, "startTime": 61_000, "endTime": 110_000, "track": []},
        ],
    }
    record.update(overrides)
    return record


def _session(session_id: int, laps=()) -> Session:
    return Session(id=session_id, date="2025-03-01T14:30:00.000Z", session_name="s",
                   finish_line=FinishLine(1.0, 2.0), laps=tuple(laps))


@pytest.fixture
def repo(store):
    return SessionRepository(store)


# ---- normalization ----

def test_normalize_fills_defaults():
    raw = _record(7)
    del raw["finishLine"]
    del raw["sessionName"]
    session = normalize_record(raw)
    assert session.finish_line == FinishLine(0.0, 0.0)
    assert session.session_name == "Session 2025-03-01 14:30"
    assert all(lap.is_deceleration_lap is False for lap in session.laps)


def test_normalize_renumbers_laps():
    raw = _record(7, laps=[
        {"lapNumber": 4, "startTime": 0, "endTime": 10, "track": []},
        {"lapNumber": 4, "startTime": 10, "endTime": 30, "track": []},
        {"startTime": 30, "endTime": 35, "track": [], "isDecelerationLap": True},
    ])
    session = normalize_record(raw)
    assert [lap.lap_number for lap in session.laps] == [1, 2, 3]


def test_normalize_recomputes_fastest_lap():
    raw = _record(7, fastestLap={"lapNumber": 1, "startTime": 0, "endTime": 1})
    session = normalize_record(raw)
    assert session.fastest_lap.lap_number == 2
    assert session.to_dict()["fastestLap"]["duration"] == 49_000


@pytest.mark.parametrize("missing", ["id", "date"])
def test_normalize_requires_id_and_date(missing):
    raw = _record(7)
    del raw[missing]
    with pytest.raises(SessionImportError):
        normalize_record(raw)


def test_normalize_rejects_bad_track_point():
    raw = _record(7, track=[{"latitude": "north", "longitude": 0, "timestamp": 0}])
    with pytest.raises(SessionImportError):
        normalize_record(raw)


def test_normalize_rejects_non_finite_id():
    with pytest.raises(SessionImportError):
        parse_import_payload('[{"id": 1e400, "date": "2025-03-01T14:30:00.000Z"}]')


@pytest.mark.parametrize("key", ["startTime", "endTime", "lapNumber"])
def test_normalize_rejects_non_finite_lap_times(key):
    lap = {"lapNumber": 1, "startTime": 0, "endTime": 10, "track": []}
    lap[key] = float("inf")
    with pytest.raises(SessionImportError):
        normalize_record(_record(7, laps=[lap]))


def test_normalize_only_true_marks_deceleration_lap():
    raw = _record(7, laps=[
        {"startTime": 0, "endTime": 10, "track": [], "isDecelerationLap": "false"},
        {"startTime": 10, "endTime": 20, "track": [], "isDecelerationLap": 1},
        {"startTime": 20, "endTime": 25, "track": [], "isDecelerationLap": True},
    ])
    session = normalize_record(raw)
    assert [lap.is_deceleration_lap for lap in session.laps] == [False, False, True]
    assert session.fastest_lap.lap_number == 1


def test_default_session_name_unparseable_date():
    assert default_session_name("yesterday") == "Session yesterday"


def test_payload_must_be_array():
    with pytest.raises(SessionImportError):
        parse_import_payload(json.dumps({"id": 1, "date": "x"}))
    with pytest.raises(SessionImportError):
        parse_import_payload(b"{not json")


def test_merge_dedupes_by_id_later_wins():
    a1, b, a2 = _session(1), _session(2), Session(id=1, date="later")
    merged = merge_sessions([a1, b], [a2])
    assert [s.id for s in merged] == [1, 2]
    assert merged[0].date == "later"


# ---- repository ----

@pytest.mark.asyncio
async def test_empty_repository(repo):
    assert await repo.list_sessions() == []
    assert await repo.get_session(1) is None
    assert json.loads(await repo.export_sessions()) == []


@pytest.mark.asyncio
async def test_append_and_get(repo):
    await repo.append_session(_session(1, laps=[Lap(1, 0, 5_000)]))
    await repo.append_session(_session(2))
    sessions = await repo.list_sessions()
    assert [s.id for s in sessions] == [1, 2]
    fetched = await repo.get_session(1)
    assert fetched.fastest_lap.duration_ms == 5_000


@pytest.mark.asyncio
async def test_delete_session(repo):
    await repo.append_session(_session(1))
    await repo.append_session(_session(2))
    assert await repo.delete_session(1) is True
    assert await repo.delete_session(1) is False
    assert [s.id for s in await repo.list_sessions()] == [2]


@pytest.mark.asyncio
async def test_saved_session_without_finish_line_reads_back_without_one(repo):
    await repo.append_session(Session(id=4, date="2025-03-01T14:30:00.000Z"))
    stored = await repo.get_session(4)
    assert stored.finish_line is None
    assert json.loads(await repo.export_sessions())[0]["finishLine"] is None


@pytest.mark.asyncio
async def test_import_is_idempotent(repo):
    payload = json.dumps([_record(1), _record(2)])
    first = await repo.import_sessions(payload)
    once = await repo.export_sessions()
    second = await repo.import_sessions(payload)
    twice = await repo.export_sessions()

    assert first.total == 2
    assert second.total == 2
    assert once == twice


@pytest.mark.asyncio
async def test_import_merges_with_existing(repo):
    await repo.append_session(_session(1))
    await repo.append_session(_session(5))
    result = await repo.import_sessions(json.dumps([_record(1), _record(9)]))
    assert result.imported == 2
    assert result.total == 3
    updated = await repo.get_session(1)
    assert updated.session_name == "Treino 1"


@pytest.mark.asyncio
async def test_bad_import_leaves_storage_untouched(repo, store):
    await repo.append_session(_session(1))
    before = await store.get("sessions")

    bad = [_record(2), {"date": "2025-01-01"}]
    with pytest.raises(SessionImportError):
        await repo.import_sessions(json.dumps(bad))
    assert await store.get("sessions") == before


@pytest.mark.asyncio
async def test_export_round_trips_through_import():
    source = SessionRepository(InMemoryKeyValueStore())
    await source.import_sessions(json.dumps([_record(1), _record(2)]))
    target = SessionRepository(InMemoryKeyValueStore())
    await target.import_sessions(await source.export_sessions())
    assert await target.export_sessions() == await source.export_sessions()


@pytest.mark.asyncio
async def test_corrupt_records_skipped(store):
    await store.set("sessions", json.dumps([_record(1), {"date": "no id"}]).encode())
    sessions = await SessionRepository(store).list_sessions()
    assert [s.id for s in sessions] == [1]


@pytest.mark.asyncio
async def test_invalid_stored_json_raises_storage_error(store):
    await store.set("sessions", b"\x00garbage")
    with pytest.raises(StorageError):
        await SessionRepository(store).list_sessions()


@pytest.mark.asyncio
async def test_store_failures_become_storage_errors():
    repo = SessionRepository(FailingStore())
    with pytest.raises(StorageError):
        await repo.list_sessions()
    with pytest.raises(StorageError):
        await repo.save_finish_line(FinishLine(0.0, 0.0))
    with pytest.raises(StorageError):
        await repo.clear_current()


@pytest.mark.asyncio
async def test_finish_line_round_trip(repo, store):
    assert await repo.load_finish_line() is None
    await repo.save_finish_line(FinishLine(-23.7, -46.69))
    assert json.loads(await store.get("finishLine")) == {"latitude": -23.7, "longitude": -46.69}
    assert await repo.load_finish_line() == FinishLine(-23.7, -46.69)


@pytest.mark.asyncio
async def test_current_snapshot(repo):
    assert await repo.load_current() is None
    snapshot = Session(id=3, date="2025-03-01T00:00:00.000Z",
                       track=(Fix(0.0, 0.0, 0, lap_index=-1),))
    await repo.save_current(snapshot)
    loaded = await repo.load_current()
    assert loaded.id == 3
    assert loaded.track[0].lap_index == -1
    await repo.clear_current()
    assert await repo.load_current() is None
