import logging
import os
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from stopsync.errors import ImportFormatError, RemoteApiError, StopNotFoundError
from stopsync.models import (
    DeparturesResponse,
    ImportResponse,
    ImportResult,
    RemoteImportRequest,
    RemotePushRequest,
    ScheduleSummary,
    Stop,
    StopCreate,
    StopUpdate,
)
from stopsync.schedule_index import DEFAULT_LIMIT, ScheduleIndex, current_time_string

logger = logging.getLogger("stopsync.routes")

router = APIRouter()


def _get_state():
    from stopsync.main import app_state
    return app_state


def _session():
    session = _get_state().get("session")
    if session is None:
        raise HTTPException(status_code=503, detail="Stop session not initialized")
    return session


def _schedule() -> ScheduleIndex:
    state = _get_state()
    if state.get("schedule") is None:
        state["schedule"] = ScheduleIndex()
    return state["schedule"]


def _find(stop_id: str) -> Stop:
    try:
        return _session().find_stop(stop_id)
    except StopNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _import_response(result: ImportResult) -> ImportResponse:
    return ImportResponse(
        kind=result.kind,
        imported=len(result.stops),
        skipped=result.skipped,
        original_header=result.original_header,
        column_mapping=result.column_mapping,
    )


def _default_limit() -> int:
    try:
        return int(os.getenv("STOPSYNC_DEPARTURE_LIMIT", DEFAULT_LIMIT))
    except ValueError:
        return DEFAULT_LIMIT


@router.get("/health")
async def health():
    return {"status": "ok", "service": "StopSync API"}


# --- stops ---


@router.get("/stops", response_model=list[Stop])
async def list_stops():
    return _session().stops


@router.post("/stops", response_model=Stop, status_code=201)
async def capture_stop(request: StopCreate):
    """Record a stop at coordinates taken from the client's GPS."""
    try:
        return _session().capture_stop(
            request.stop_lat, request.stop_lon, request.stop_name, request.stop_desc,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/stops")
async def clear_stops():
    _session().clear()
    return {"cleared": True}


@router.patch("/stops/{stop_id}", response_model=Stop)
async def edit_stop(stop_id: str, request: StopUpdate):
    stop = _find(stop_id)
    return _session().edit_stop(
        stop,
        name=request.stop_name,
        desc=request.stop_desc,
        lat=request.stop_lat,
        lon=request.stop_lon,
    )


@router.delete("/stops/{stop_id}", status_code=204)
async def delete_stop(stop_id: str):
    stop = _find(stop_id)
    _session().delete_stop(stop)
    return Response(status_code=204)


@router.put("/stops/{stop_id}/photo", response_model=Stop)
async def attach_photo(stop_id: str, request: Request, filename: str = Query("")):
    stop = _find(stop_id)
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Photo body is empty")
    return _session().attach_photo(stop, data, filename)


@router.get("/stops/{stop_id}/departures", response_model=DeparturesResponse)
async def next_departures(
    stop_id: str,
    at: Optional[str] = Query(None, description="HH:MM:SS, defaults to now"),
    limit: Optional[int] = Query(None, ge=0),
):
    stop = _find(stop_id)
    at_time = at or current_time_string()
    departures = _session().next_departures(
        stop, _schedule(), at_time, _default_limit() if limit is None else limit,
    )
    return DeparturesResponse(
        stop_id=str(stop.stop_id),
        stop_code=stop.stop_code,
        at_time=at_time,
        departures=departures,
    )


# --- import / export ---


@router.post("/import", response_model=ImportResponse)
async def import_file(request: Request, filename: str = Query(..., description="Used to pick JSON vs delimited")):
    content = await request.body()
    try:
        result = _session().import_file(filename, content)
    except ImportFormatError as e:
        logger.warning(f"Import of {filename!r} rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return _import_response(result)


@router.post("/import/remote", response_model=ImportResponse)
async def import_remote(request: RemoteImportRequest):
    from stopsync.remote_api import default_api_url

    url = request.url or default_api_url()
    try:
        result = await _session().load_from_api(url, _get_state().get("http_client"))
    except ImportFormatError as e:
        raise HTTPException(status_code=400, detail=f"Failed to load from API: {e}")
    except RemoteApiError as e:
        raise HTTPException(status_code=502, detail=f"Failed to load from API: {e}")
    return _import_response(result)


@router.put("/stops/{stop_id}/remote")
async def push_stop(stop_id: str, request: RemotePushRequest):
    from stopsync.remote_api import default_api_url

    stop = _find(stop_id)
    base_url = request.base_url or default_api_url()
    try:
        return await _session().push_stop(base_url, stop, _get_state().get("http_client"))
    except RemoteApiError as e:
        logger.warning(f"Push of stop {stop_id} failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to update stop: {e}")


@router.get("/export")
async def export_stops(
    fmt: str = Query("txt", alias="format", pattern="^(txt|json)$"),
    api_mode: bool = Query(False),
    include_images: bool = Query(False),
):
    export = _session().export(fmt, api_mode=api_mode, include_images=include_images)
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


# --- schedule feed ---


@router.post("/schedule", response_model=ScheduleSummary)
async def upload_schedule(request: Request):
    """Replace the schedule feed with an uploaded GTFS zip."""
    data = await request.body()
    schedule = ScheduleIndex()
    try:
        schedule.load_zip(data)
    except ImportFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _get_state()["schedule"] = schedule
    return schedule.summary()


@router.get("/schedule", response_model=ScheduleSummary)
async def schedule_status():
    return _schedule().summary()
