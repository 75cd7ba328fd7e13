"""Session history, export/import, and finish-line endpoints."""

from __future__ import annotations

import json
from datetime import date

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from laptimer.core.aggregator import session_view, summarize_track
from laptimer.core.errors import InvalidFixError, SessionImportError, StorageError
from laptimer.core.models import FinishLine

router = APIRouter(prefix="/api/v1")


def _storage_unavailable(exc: StorageError) -> JSONResponse:
    return JSONResponse(content={"error": f"storage unavailable: {exc}"}, status_code=503)


def _session_row(session) -> dict:
    """Compact list entry for the session history screen."""
    best = session.fastest_lap
    summary = summarize_track(session.track)
    return {
        "id": session.id,
        "date": session.date,
        "sessionName": session.session_name,
        "lapCount": len(session.laps),
        "pointCount": len(session.track),
        "fastestLapMs": best.duration_ms if best else None,
        "distance_m": round(summary.distance_m, 1),
    }


@router.get("/sessions")
async def list_sessions() -> JSONResponse:
    """All saved sessions, newest first."""
    from laptimer.main import get_repository

    try:
        sessions = await get_repository().list_sessions()
    except StorageError as exc:
        return _storage_unavailable(exc)
    sessions.sort(key=lambda s: s.id, reverse=True)
    return JSONResponse(content={"sessions": [_session_row(s) for s in sessions],
                                 "total": len(sessions)})


@router.get("/sessions/export")
async def export_sessions() -> Response:
    """Download every session as a JSON array."""
    from laptimer.main import get_repository

    try:
        payload = await get_repository().export_sessions()
    except StorageError as exc:
        return _storage_unavailable(exc)
    filename = f"laptimer_sessions_{date.today():%Y-%m-%d}.json"
    return Response(
        content=payload,
        media_type="application/json",
        headers={"content-disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/sessions/import")
async def import_sessions(request: Request) -> JSONResponse:
    """Merge an exported JSON array into storage (dedup by id, import wins)."""
    from laptimer.main import get_repository

    body_bytes = await request.body()
    try:
        result = await get_repository().import_sessions(body_bytes)
    except SessionImportError as exc:
        return JSONResponse(content={"accepted": False, "error": str(exc)}, status_code=422)
    except StorageError as exc:
        return _storage_unavailable(exc)
    return JSONResponse(content={"accepted": True, "imported": result.imported,
                                 "total": result.total})


@router.get("/sessions/current")
async def current_snapshot() -> JSONResponse:
    """In-progress snapshot left by a session that was never stopped."""
    from laptimer.main import get_tracker

    try:
        session = await get_tracker().recover()
    except StorageError as exc:
        return _storage_unavailable(exc)
    if session is None:
        return JSONResponse(content={"error": "no in-progress session"}, status_code=404)
    return JSONResponse(content=session.to_dict())


@router.get("/sessions/{session_id}")
async def get_session(session_id: int) -> JSONResponse:
    """One session with its derived statistics, colored segments, and map region."""
    from laptimer.main import get_repository

    try:
        session = await get_repository().get_session(session_id)
    except StorageError as exc:
        return _storage_unavailable(exc)
    if session is None:
        return JSONResponse(content={"error": f"session {session_id} not found"}, status_code=404)
    return JSONResponse(content={
        "session": session.to_dict(),
        "view": session_view(session.track, session.laps),
    })


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: int) -> JSONResponse:
    from laptimer.main import get_repository

    try:
        deleted = await get_repository().delete_session(session_id)
    except StorageError as exc:
        return _storage_unavailable(exc)
    if not deleted:
        return JSONResponse(content={"error": f"session {session_id} not found"}, status_code=404)
    return JSONResponse(content={"deleted": session_id})


@router.get("/finish-line")
async def get_finish_line() -> JSONResponse:
    from laptimer.main import get_repository

    try:
        finish_line = await get_repository().load_finish_line()
    except StorageError as exc:
        return _storage_unavailable(exc)
    return JSONResponse(content={"finishLine": finish_line.to_dict() if finish_line else None})


@router.put("/finish-line")
async def put_finish_line(request: Request) -> JSONResponse:
    from laptimer.main import get_repository

    try:
        finish_line = FinishLine.from_dict(json.loads(await request.body()))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(content={"error": "invalid JSON"}, status_code=400)
    except InvalidFixError as exc:
        return JSONResponse(content={"error": str(exc)}, status_code=400)

    try:
        await get_repository().save_finish_line(finish_line)
    except StorageError as exc:
        return _storage_unavailable(exc)
    return JSONResponse(content={"finishLine": finish_line.to_dict()})
