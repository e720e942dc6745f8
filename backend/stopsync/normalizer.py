"""Turn parsed rows, JSON objects and remote API objects into canonical Stops.

Normalizers are pure: they return an ImportResult and never touch session
state, so a rejected import leaves the caller's collection as it was.
"""

import json
import logging
import math
import time
from typing import Any, Callable, Optional

from stopsync.errors import ImportFormatError
from stopsync.models import ImportResult, SourceKind, Stop
from stopsync.schema_mapper import (
    REMOTE_FIELDS,
    SchemaDetection,
    detect_schema,
    resolve_object_field,
)
from stopsync.tabular import fit_row, split_header, split_line, split_lines

logger = logging.getLogger("stopsync.normalizer")

IdSource = Callable[[], int]


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def make_ids(id_source: Optional[IdSource] = None) -> tuple[int, str]:
    """Timestamp identifiers: stop_id = now in ms, stop_code = 'S' + stop_id.

    Two calls within the same millisecond return the same id. Stops are kept
    in a list and never merged on id, so a collision only affects lookups.
    """
    stop_id = (id_source or timestamp_ms)()
    return stop_id, f"S{stop_id}"


def parse_coord(value: Any) -> Optional[float]:
    """Finite float or None. Blank strings, NaN and infinities are rejected."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _as_identifier(value: Any):
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return str(value)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


# --- delimited text ---


def _row_to_stop(
    detection: SchemaDetection,
    cols: list[str],
    id_source: Optional[IdSource],
) -> Optional[Stop]:
    lat = parse_coord(detection.value(cols, "lat"))
    lon = parse_coord(detection.value(cols, "lon"))
    if lat is None or lon is None:
        return None

    if detection.kind == SourceKind.CANONICAL:
        # Externally assigned identifiers are kept exactly as written
        stop_id = detection.value(cols, "id")
        stop_code = detection.value(cols, "code")
    else:
        stop_id, stop_code = make_ids(id_source)

    return Stop(
        stop_id=stop_id,
        stop_code=stop_code,
        stop_name=detection.value(cols, "name"),
        stop_desc=detection.value(cols, "desc"),
        stop_lat=lat,
        stop_lon=lon,
        photo_filename=detection.value(cols, "img"),
        original_row=dict(zip(detection.header, cols)),
    )


def normalize_delimited(text: str, id_source: Optional[IdSource] = None) -> ImportResult:
    lines = split_lines(text)
    if not lines:
        raise ImportFormatError("File is empty.")

    header = split_header(lines[0])
    detection = detect_schema(header)
    width = len(header)

    stops = []
    skipped = 0
    for line_no, line in enumerate(lines[1:], start=2):
        cols = fit_row(split_line(line), width)
        stop = _row_to_stop(detection, cols, id_source)
        if stop is None:
            logger.warning(f"Line {line_no}: no usable coordinates, row skipped")
            skipped += 1
            continue
        stops.append(stop)

    logger.info(f"Imported {len(stops)} stops ({detection.kind.value} schema, {skipped} skipped)")
    return ImportResult(
        kind=detection.kind,
        stops=stops,
        original_header=header,
        column_mapping=detection.mapping,
        skipped=skipped,
    )


# --- JSON file ---


def _object_to_stop(obj: dict, id_source: Optional[IdSource]) -> Optional[Stop]:
    lat = parse_coord(resolve_object_field(obj, "lat"))
    lon = parse_coord(resolve_object_field(obj, "lon"))
    if lat is None or lon is None:
        return None

    ident = resolve_object_field(obj, "id")
    if ident:
        stop_id = _as_identifier(ident)
        stop_code = _as_text(resolve_object_field(obj, "code")) or f"S{stop_id}"
    else:
        stop_id, stop_code = make_ids(id_source)

    return Stop(
        stop_id=stop_id,
        stop_code=stop_code,
        stop_name=_as_text(resolve_object_field(obj, "name")),
        stop_desc=_as_text(resolve_object_field(obj, "desc")),
        stop_lat=lat,
        stop_lon=lon,
        photo_filename=_as_text(resolve_object_field(obj, "img")),
        original_row=dict(obj),
    )


def normalize_json(text: str, id_source: Optional[IdSource] = None) -> ImportResult:
    try:
        data = json.loads(text.lstrip("\ufeff").strip())
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Invalid JSON file: {e}") from e
    if not isinstance(data, list):
        raise ImportFormatError("JSON must be an array of stop objects")

    stops = []
    skipped = 0
    for i, obj in enumerate(data):
        stop = _object_to_stop(obj, id_source) if isinstance(obj, dict) else None
        if stop is None:
            logger.warning(f"JSON item {i}: not a stop object with coordinates, skipped")
            skipped += 1
            continue
        stops.append(stop)

    logger.info(f"Imported {len(stops)} stops from JSON ({skipped} skipped)")
    return ImportResult(kind=SourceKind.JSON, stops=stops, skipped=skipped)


# --- remote "allBusStops" feed ---


def _remote_to_stop(obj: dict, id_source: Optional[IdSource]) -> Optional[Stop]:
    lat = parse_coord(obj.get("latitude"))
    lon = parse_coord(obj.get("longitude"))
    if lat is None or lon is None:
        return None

    ident = obj.get("id")
    if ident:
        stop_id = _as_identifier(ident)
        stop_code = f"S{stop_id}"
    else:
        stop_id, stop_code = make_ids(id_source)

    # Every schema field is kept, plus anything extra the server sent
    original_row = {name: obj.get(name) for name in REMOTE_FIELDS}
    original_row.update(obj)

    return Stop(
        stop_id=stop_id,
        stop_code=stop_code,
        stop_name=_as_text(obj.get("name")),
        stop_desc=_as_text(obj.get("description")),
        stop_lat=lat,
        stop_lon=lon,
        original_row=original_row,
    )


def normalize_remote(payload: Any, id_source: Optional[IdSource] = None) -> ImportResult:
    data = payload.get("allBusStops") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        raise ImportFormatError('Expected "allBusStops" to be an array')

    stops = []
    skipped = 0
    for i, obj in enumerate(data):
        stop = _remote_to_stop(obj, id_source) if isinstance(obj, dict) else None
        if stop is None:
            logger.warning(f"Remote stop {i}: missing coordinates, skipped")
            skipped += 1
            continue
        stops.append(stop)

    logger.info(f"Loaded {len(stops)} stops from remote feed ({skipped} skipped)")
    return ImportResult(kind=SourceKind.REMOTE, stops=stops, skipped=skipped)
