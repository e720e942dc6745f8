"""Client for the remote bus-stop service ("allBusStops" GET, per-stop PUT).

One attempt per call; failures raise RemoteApiError for the caller to report.
"""

import logging
import os
from typing import Any, Optional
from urllib.parse import quote

import httpx

from stopsync.errors import RemoteApiError
from stopsync.models import Stop

logger = logging.getLogger("stopsync.remote")

REQUEST_TIMEOUT = 10.0


def default_api_url() -> str:
    return os.getenv("STOPSYNC_API_URL", "")


async def _send(
    method: str,
    url: str,
    http_client: Optional[httpx.AsyncClient],
    **kwargs,
) -> httpx.Response:
    try:
        if http_client:
            resp = await http_client.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                resp = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        logger.warning(f"{method} {url} failed: {e}")
        raise RemoteApiError(f"Network error: {e}") from e

    if not resp.is_success:
        logger.warning(f"{method} {url} returned {resp.status_code}")
        raise RemoteApiError(f"Network error: {resp.status_code}")
    return resp


async def fetch_remote_stops(url: str, http_client: Optional[httpx.AsyncClient] = None) -> Any:
    """GET the endpoint and return its decoded JSON body."""
    if not url:
        raise RemoteApiError("API URL is required")

    resp = await _send("GET", url, http_client)
    try:
        return resp.json()
    except ValueError as e:
        raise RemoteApiError(f"Response is not valid JSON: {e}") from e


def stop_payload(stop: Stop, updated_at: str) -> dict[str, Any]:
    """Full remote schema for one stop; fields the stop never had get defaults."""
    row = stop.original_row
    return {
        "id": stop.stop_id,
        "name": stop.stop_name,
        "alias": row.get("alias"),
        "district": row.get("district"),
        "type": row.get("type"),
        "latitude": stop.stop_lat,
        "longitude": stop.stop_lon,
        "is_active": row.get("is_active") if row.get("is_active") is not None else True,
        "description": stop.stop_desc,
        "capacity": row.get("capacity") if row.get("capacity") is not None else 0,
        "operating_hours": row.get("operating_hours"),
        "nearby_landmarks": row.get("nearby_landmarks"),
        "highway": row.get("highway"),
        "created_at": row.get("created_at"),
        "updated_at": updated_at,
    }


def stop_url(base_url: str, stop_id) -> str:
    return base_url.rstrip("/") + "/" + quote(str(stop_id), safe="")


async def put_stop(
    base_url: str,
    stop: Stop,
    updated_at: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """PUT one stop. Returns the decoded response body, or {} when it has none."""
    if not base_url:
        raise RemoteApiError("API base URL is required")

    url = stop_url(base_url, stop.stop_id)
    resp = await _send("PUT", url, http_client, json=stop_payload(stop, updated_at))
    logger.info(f"Updated stop {stop.stop_id} at {url}")
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"result": body}
