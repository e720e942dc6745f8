"""Schema detection and column-alias resolution for imported stop data.

A single alias table drives every import path:

- delimited text with an unknown header: the first *header* (in header order)
  whose normalized key is an alias wins;
- JSON objects and remote API objects: the first *alias* (in table order)
  present with a non-null value wins.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from stopsync.errors import ImportFormatError
from stopsync.models import ColumnMapping, SourceKind

logger = logging.getLogger("stopsync.schema")

_KEY_STRIP = re.compile(r"[^a-z0-9_]")

CANONICAL_KEYS = ("stop_id", "stop_code", "stop_name", "stop_desc", "stop_lat", "stop_lon")

# Logical field -> canonical column key (img_filename is optional)
CANONICAL_FIELD_KEYS = {
    "id": "stop_id",
    "code": "stop_code",
    "name": "stop_name",
    "desc": "stop_desc",
    "lat": "stop_lat",
    "lon": "stop_lon",
    "img": "img_filename",
}

# Logical field -> accepted keys, highest priority first
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("stop_id", "id"),
    "code": ("stop_code", "code"),
    "name": ("name", "stop_name", "stopname", "title"),
    "desc": ("desc", "stop_desc", "description", "stopdesc"),
    "lat": ("lat", "latitude", "stop_lat", "_lat", "stoplat"),
    "lon": ("lon", "lng", "longitude", "stop_lon", "_lon", "stoplon"),
    "img": ("img", "image", "photo", "img_filename", "imgfilename"),
}

# Fields a heuristic header is searched for, and the ColumnMapping slot each fills
HEURISTIC_FIELDS = {
    "name": "name_col",
    "lat": "lat_col",
    "lon": "lon_col",
    "desc": "desc_col",
    "img": "img_col",
}


def normalize_key(token: str) -> str:
    """'Stop Lat.' -> 'stoplat', ' STOP_ID ' -> 'stop_id'."""
    return _KEY_STRIP.sub("", token.lower())


@dataclass
class SchemaDetection:
    kind: SourceKind
    header: list[str]
    keys: list[str]
    columns: dict[str, int] = field(default_factory=dict)  # logical field -> column index
    mapping: ColumnMapping = field(default_factory=ColumnMapping)

    def value(self, row: list[str], logical: str) -> str:
        idx = self.columns.get(logical)
        if idx is None or idx >= len(row):
            return ""
        return row[idx]


def is_canonical(keys: list[str]) -> bool:
    present = set(keys)
    return all(k in present for k in CANONICAL_KEYS)


def _first_index(keys: list[str], wanted: str) -> Optional[int]:
    try:
        return keys.index(wanted)
    except ValueError:
        return None


def detect_schema(header: list[str]) -> SchemaDetection:
    """Classify a header row and resolve the column for each logical field.

    Raises ImportFormatError when a non-canonical header has no latitude or no
    longitude column.
    """
    keys = [normalize_key(h) for h in header]

    if is_canonical(keys):
        columns = {}
        for logical, key in CANONICAL_FIELD_KEYS.items():
            idx = _first_index(keys, key)
            if idx is not None:
                columns[logical] = idx
        logger.info(f"Canonical schema detected ({len(header)} columns)")
        return SchemaDetection(SourceKind.CANONICAL, list(header), keys, columns)

    columns = {}
    resolved = {}
    for logical, slot in HEURISTIC_FIELDS.items():
        aliases = FIELD_ALIASES[logical]
        for idx, key in enumerate(keys):
            if key in aliases:
                columns[logical] = idx
                resolved[slot] = header[idx]
                break

    mapping = ColumnMapping(**resolved)
    if mapping.lat_col is None or mapping.lon_col is None:
        raise ImportFormatError("Could not detect latitude/longitude columns.")

    logger.info(
        f"Heuristic schema mapped: lat={mapping.lat_col!r} lon={mapping.lon_col!r} "
        f"name={mapping.name_col!r} desc={mapping.desc_col!r} img={mapping.img_col!r}"
    )
    return SchemaDetection(SourceKind.HEURISTIC, list(header), keys, columns, mapping)


def resolve_object_field(obj: Mapping[str, Any], logical: str) -> Any:
    """First non-null value among the aliases of a logical field, else None."""
    for key in FIELD_ALIASES[logical]:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def canonical_columns(header: list[str]) -> dict[str, str]:
    """Logical field -> source header name for columns named like canonical keys."""
    keys = [normalize_key(h) for h in header]
    found = {}
    for logical, key in CANONICAL_FIELD_KEYS.items():
        idx = _first_index(keys, key)
        if idx is not None:
            found[logical] = header[idx]
    return found


# Fixed schema of the remote "allBusStops" endpoint, in export column order
REMOTE_FIELDS = (
    "id",
    "name",
    "alias",
    "district",
    "type",
    "latitude",
    "longitude",
    "is_active",
    "description",
    "capacity",
    "operating_hours",
    "nearby_landmarks",
    "highway",
    "created_at",
    "updated_at",
)
