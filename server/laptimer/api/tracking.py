"""Live tracking API endpoints.

Thin FastAPI adapter over TrackingService: parses JSON bodies into core
models and maps tracking errors onto HTTP status codes.
"""

from __future__ import annotations

import json
import math

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from laptimer.core.aggregator import session_view
from laptimer.core.errors import InvalidFixError, NoActiveSessionError, SessionAlreadyActiveError
from laptimer.core.models import FinishLine, Fix

router = APIRouter(prefix="/api/v1")


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(content={"accepted": False, "error": message}, status_code=status)


async def _json_body(request: Request, *, allow_empty: bool = False):
    body_bytes = await request.body()
    if allow_empty and not body_bytes.strip():
        return {}
    return json.loads(body_bytes)


def _epoch_ms(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"not a number: {value!r}")
    try:
        as_float = float(value)
    except OverflowError:
        raise ValueError("number out of range") from None
    if not math.isfinite(as_float):
        raise ValueError("number is not finite")
    return int(as_float)


def _event_to_dict(event) -> dict:
    return {
        "time_ms": event.time_ms,
        "opened_lap_number": event.opened_lap_number,
        "completed_lap": (
            {"lap_number": event.completed.lap_number, "duration_ms": event.completed.duration_ms}
            if event.completed else None
        ),
    }


@router.post("/tracking/start")
async def start_tracking(request: Request) -> JSONResponse:
    """Start a session.

    Body (all optional): {"finishLine": {"latitude", "longitude"}, "sessionName": str}.
    Without a finish line the last stored one is used.
    """
    from laptimer.main import get_tracker

    try:
        body = await _json_body(request, allow_empty=True)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "invalid JSON")
    if not isinstance(body, dict):
        return _error(400, "body must be a JSON object")

    finish_line = None
    if body.get("finishLine") is not None:
        try:
            finish_line = FinishLine.from_dict(body["finishLine"])
        except InvalidFixError as exc:
            return _error(400, f"invalid finishLine: {exc}")

    try:
        info = await get_tracker().start(finish_line, body.get("sessionName"))
    except SessionAlreadyActiveError as exc:
        return _error(409, str(exc))
    return JSONResponse(content={"accepted": True, **info})


@router.post("/tracking/positions")
async def push_positions(request: Request) -> JSONResponse:
    """Feed raw positions: one position object, or {"positions": [...]}.

    Malformed positions are skipped and counted; they never fail the batch.
    """
    from laptimer.main import get_tracker

    tracker = get_tracker()
    try:
        body = await _json_body(request)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "invalid JSON")

    if isinstance(body, dict) and "positions" in body:
        raw_positions = body["positions"]
    else:
        raw_positions = [body]
    if not isinstance(raw_positions, list):
        return _error(400, "positions must be an array")

    if not tracker.active:
        for raw in raw_positions:
            await tracker.push_raw(raw)
        return _error(409, "no session is being tracked")

    events = []
    for raw in raw_positions:
        event = await tracker.push_raw(raw)
        if event is not None:
            events.append(_event_to_dict(event))

    return JSONResponse(content={
        "accepted": True,
        "received": len(raw_positions),
        "events": events,
        "live": tracker.live() if tracker.active else None,
    })


@router.get("/tracking/live")
async def live() -> JSONResponse:
    """Current speed, lap number, elapsed/last/best lap time, distance to the line."""
    from laptimer.main import get_tracker

    try:
        return JSONResponse(content=get_tracker().live())
    except NoActiveSessionError as exc:
        return _error(409, str(exc))


@router.post("/tracking/stop")
async def stop_tracking(request: Request) -> JSONResponse:
    """Stop the session, seal the open lap, and save it.

    Optional body: {"stoppedAt": epoch_ms}. Defaults to the last fix time.
    """
    from laptimer.main import get_tracker

    try:
        body = await _json_body(request, allow_empty=True)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "invalid JSON")
    stopped_at = body.get("stoppedAt") if isinstance(body, dict) else None
    if stopped_at is not None:
        try:
            stopped_at = _epoch_ms(stopped_at)
        except ValueError:
            return _error(400, "stoppedAt must be a finite number")

    try:
        session = await get_tracker().stop(stopped_at)
    except NoActiveSessionError as exc:
        return _error(409, str(exc))

    return JSONResponse(content={
        "accepted": True,
        "session": session.to_dict(),
        "view": session_view(session.track, session.laps),
    })


@router.post("/setup/positions")
async def setup_position(request: Request) -> JSONResponse:
    """Pre-session GPS wait: report accuracy and whether it is good enough."""
    from laptimer.main import get_tracker

    try:
        body = await _json_body(request)
        fix = Fix.from_dict(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "invalid JSON")
    except InvalidFixError as exc:
        return _error(400, str(exc))
    return JSONResponse(content=get_tracker().offer_accuracy(fix))
