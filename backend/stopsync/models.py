from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


class SourceKind(str, Enum):
    CANONICAL = "canonical"
    HEURISTIC = "heuristic"
    JSON = "json"
    REMOTE = "remote"


class Stop(BaseModel):
    stop_id: Union[int, str]
    stop_code: str
    stop_name: str = ""
    stop_desc: str = ""
    stop_lat: float
    stop_lon: float
    photo_filename: str = ""
    photo_preview: Optional[bytes] = Field(default=None, exclude=True)
    original_row: dict[str, Any] = Field(default_factory=dict)  # source column -> source value

    @field_validator("stop_lat", "stop_lon")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be a finite number")
        return value


class ColumnMapping(BaseModel):
    """Source header names resolved for each logical field of a heuristic import."""
    name_col: Optional[str] = None
    lat_col: Optional[str] = None
    lon_col: Optional[str] = None
    desc_col: Optional[str] = None
    img_col: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class ImportResult(BaseModel):
    kind: SourceKind
    stops: list[Stop]
    original_header: Optional[list[str]] = None
    column_mapping: ColumnMapping = Field(default_factory=ColumnMapping)
    skipped: int = 0  # rows dropped for unusable coordinates


class Departure(BaseModel):
    departure_time: str  # HH:MM:SS as written in the feed
    route_name: str
    trip_id: str = ""
    route_id: str = ""


class ExportFile(BaseModel):
    filename: str
    content: str
    media_type: str = "text/plain"


class ScheduleSummary(BaseModel):
    loaded: bool = False
    stops: int = 0
    trips: int = 0
    routes: int = 0
    stop_times: int = 0  # total entries across all stops


# --- HTTP request / response models ---


class StopCreate(BaseModel):
    stop_lat: float
    stop_lon: float
    stop_name: str = ""
    stop_desc: str = ""


class StopUpdate(BaseModel):
    stop_name: Optional[str] = None
    stop_desc: Optional[str] = None
    stop_lat: Optional[float] = None
    stop_lon: Optional[float] = None


class RemoteImportRequest(BaseModel):
    url: Optional[str] = None  # falls back to STOPSYNC_API_URL


class RemotePushRequest(BaseModel):
    base_url: Optional[str] = None


class ImportResponse(BaseModel):
    kind: SourceKind
    imported: int
    skipped: int = 0
    original_header: Optional[list[str]] = None
    column_mapping: ColumnMapping


class DeparturesResponse(BaseModel):
    stop_id: str
    stop_code: str
    at_time: str
    departures: list[Departure]
