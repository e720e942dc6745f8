"""Rebuild output tables from Stops and the rows they were imported from.

Three delimited layouts are produced:

- API: the fixed remote schema, identifiers/name/description/coordinates and
  updated_at taken from the Stop, everything else passed through;
- original header: the exact header of the last delimited import, with
  unknown columns passed through untouched;
- fallback: the six canonical columns.

JSON export always uses the API row layout.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from stopsync.models import ColumnMapping, ExportFile, Stop
from stopsync.normalizer import parse_coord
from stopsync.schema_mapper import HEURISTIC_FIELDS, REMOTE_FIELDS, canonical_columns
from stopsync.tabular import QUOTE, format_value, join_row, quote_field

logger = logging.getLogger("stopsync.exporter")

FALLBACK_HEADER = ("stop_id", "stop_code", "stop_name", "stop_desc", "stop_lat", "stop_lon")
EXPORT_FORMATS = ("txt", "json")


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """UTC time as '2024-05-01T12:00:00.000Z'."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# --- API schema ---


def api_row(stop: Stop, updated_at: str) -> dict[str, Any]:
    row = dict(stop.original_row)
    row["id"] = stop.stop_id
    row["name"] = stop.stop_name
    row["description"] = stop.stop_desc
    row["latitude"] = stop.stop_lat
    row["longitude"] = stop.stop_lon
    row["updated_at"] = updated_at
    return row


def export_api_rows(stops: list[Stop], updated_at: str) -> list[dict[str, Any]]:
    return [api_row(s, updated_at) for s in stops]


def export_api_text(stops: list[Stop], updated_at: str) -> str:
    lines = [",".join(REMOTE_FIELDS)]
    for row in export_api_rows(stops, updated_at):
        lines.append(join_row(row.get(f) for f in REMOTE_FIELDS))
    return "\n".join(lines)


def export_json(stops: list[Stop], updated_at: str) -> str:
    return json.dumps(export_api_rows(stops, updated_at), indent=2, ensure_ascii=False)


# --- original header ---


def overlay_columns(header: list[str], mapping: ColumnMapping) -> dict[str, str]:
    """Logical field -> header column that receives the Stop's current value.

    Columns named like canonical keys always qualify; a heuristic mapping adds
    (or overrides) the columns it resolved.
    """
    columns = canonical_columns(header)
    for logical, slot in HEURISTIC_FIELDS.items():
        col = getattr(mapping, slot)
        if col:
            columns[logical] = col
    return columns


def _coord_text(original: Any, value: float) -> str:
    # An untouched coordinate keeps its source spelling ('43.650000' stays as is)
    if isinstance(original, str) and parse_coord(original) == value:
        return original
    return format_value(value)


def original_header_row(stop: Stop, header: list[str], columns: dict[str, str]) -> list[Any]:
    row = dict(stop.original_row)

    if "id" in columns:
        row[columns["id"]] = stop.stop_id
    if "code" in columns:
        row[columns["code"]] = stop.stop_code
    if "name" in columns:
        row[columns["name"]] = stop.stop_name
    if "desc" in columns:
        row[columns["desc"]] = stop.stop_desc
    if "img" in columns and stop.photo_filename:
        row[columns["img"]] = stop.photo_filename
    for logical, value in (("lat", stop.stop_lat), ("lon", stop.stop_lon)):
        col = columns.get(logical)
        if col:
            row[col] = _coord_text(stop.original_row.get(col), value)

    return [row.get(h, "") for h in header]


def export_original_text(stops: list[Stop], header: list[str], mapping: ColumnMapping) -> str:
    columns = overlay_columns(header, mapping)
    lines = [",".join(header)]
    for stop in stops:
        lines.append(join_row(original_header_row(stop, header, columns)))
    return "\n".join(lines)


# --- fallback ---


def _quoted(text: str) -> str:
    return QUOTE + text.replace(QUOTE, '""') + QUOTE


def export_fallback_text(stops: list[Stop], include_images: bool = False) -> str:
    header = list(FALLBACK_HEADER)
    if include_images:
        header.append("img_filename")

    lines = [",".join(header)]
    for s in stops:
        fields = [
            format_value(s.stop_id),
            s.stop_code,
            _quoted(s.stop_name),
            _quoted(s.stop_desc),
            format_value(s.stop_lat),
            format_value(s.stop_lon),
        ]
        if include_images:
            fields.append(quote_field(s.photo_filename))
        lines.append(",".join(fields))
    return "\n".join(lines)


def build_export(
    stops: list[Stop],
    fmt: str = "txt",
    api_mode: bool = False,
    original_header: Optional[list[str]] = None,
    mapping: Optional[ColumnMapping] = None,
    include_images: bool = False,
    now: Optional[datetime] = None,
) -> ExportFile:
    """Pick the export layout and a timestamped filename for a download."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt}")
    if now is None:
        now = datetime.now(timezone.utc)
    ts = int(now.timestamp() * 1000)
    updated_at = iso_timestamp(now)

    if fmt == "json":
        content = export_json(stops, updated_at)
        export = ExportFile(filename=f"stopsExport{ts}.json", content=content, media_type="application/json")
    elif api_mode:
        export = ExportFile(filename=f"stopsExport{ts}.txt", content=export_api_text(stops, updated_at))
    elif original_header:
        content = export_original_text(stops, original_header, mapping or ColumnMapping())
        export = ExportFile(filename=f"stopsExport{ts}.txt", content=content)
    elif include_images:
        export = ExportFile(filename=f"stopsWithImages{ts}.txt", content=export_fallback_text(stops, True))
    else:
        export = ExportFile(filename=f"stops{ts}.txt", content=export_fallback_text(stops))

    logger.info(f"Exported {len(stops)} stops to {export.filename}")
    return export
