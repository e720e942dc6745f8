"""StopSession owns the stop collection and the state of the last import.

The session is the only holder of mutable state in the core. Imports are
computed first and swapped in whole, so a failed import changes nothing.
Callers must not run two imports/exports on one session at the same time;
the session takes no locks.
"""

import logging
import math
import os
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from stopsync import exporter, persistence, remote_api
from stopsync.errors import ImportFormatError, StopNotFoundError
from stopsync.models import ColumnMapping, Departure, ExportFile, ImportResult, SourceKind, Stop
from stopsync.normalizer import IdSource, make_ids, normalize_delimited, normalize_json, normalize_remote
from stopsync.schedule_index import DEFAULT_LIMIT, ScheduleIndex
from stopsync.tabular import format_value

logger = logging.getLogger("stopsync.session")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_coord(coord: float) -> str:
    """43.6532 -> '43_653200'."""
    return f"{coord:.6f}".replace(".", "_")


def photo_filename_for(lat: float, lon: float, source_name: str = "") -> str:
    _, ext = os.path.splitext(source_name)
    ext = ext.lstrip(".").lower() or "jpg"
    return f"img{sanitize_coord(lat)}_{sanitize_coord(lon)}.{ext}"


def decode_upload(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportFormatError(f"File is not UTF-8 text: {e}") from e


class StopSession:
    """The working stop collection plus the schema of its last delimited import.

    Not locked: the host runs one import, export or edit at a time. Autosave
    writes synchronously to the store after every mutation.
    """

    def __init__(
        self,
        store: Optional[persistence.KeyValueStore] = None,
        id_source: Optional[IdSource] = None,
        clock: Optional[Clock] = None,
    ):
        self.stops: list[Stop] = []
        self.column_mapping = ColumnMapping()
        self.original_header: Optional[list[str]] = None
        self.store = store
        self.id_source = id_source
        self.clock = clock or _utc_now

    # --- persistence ---

    def load_autosave(self) -> int:
        if self.store is None:
            return 0
        self.stops, self.original_header, self.column_mapping = persistence.load_state(self.store)
        logger.info(f"Restored {len(self.stops)} stops from autosave")
        return len(self.stops)

    def autosave(self) -> None:
        if self.store is None:
            return
        try:
            persistence.save_state(self.store, self.stops, self.original_header, self.column_mapping)
        except OSError as e:
            logger.warning(f"Autosave failed: {e}")

    def clear(self) -> None:
        """Drop every stop and the saved copy; start fresh."""
        self.stops = []
        self.original_header = None
        self.column_mapping = ColumnMapping()
        if self.store is not None:
            persistence.clear_state(self.store)
        logger.info("Auto-saved entries cleared")

    # --- stop lifecycle ---

    def find_stop(self, stop_id) -> Stop:
        """First stop whose id matches (ids may collide; order wins)."""
        wanted = str(stop_id)
        for stop in self.stops:
            if str(stop.stop_id) == wanted:
                return stop
        raise StopNotFoundError(f"No stop with id {stop_id}")

    def capture_stop(
        self,
        lat: float,
        lon: float,
        name: str = "",
        desc: str = "",
        photo: Optional[bytes] = None,
        photo_name: str = "",
    ) -> Stop:
        """Record a stop at a GPS fix supplied by the host."""
        stop_id, stop_code = make_ids(self.id_source)
        stop = Stop(
            stop_id=stop_id,
            stop_code=stop_code,
            stop_name=name.strip(),
            stop_desc=desc.strip(),
            stop_lat=lat,
            stop_lon=lon,
        )
        if photo is not None:
            self._set_photo(stop, photo, photo_name)
        self.stops.append(stop)
        self.autosave()
        return stop

    def _set_photo(self, stop: Stop, data: bytes, source_name: str) -> None:
        stop.photo_filename = photo_filename_for(stop.stop_lat, stop.stop_lon, source_name)
        stop.photo_preview = data
        col = self.column_mapping.img_col
        if col and stop.original_row:
            stop.original_row[col] = stop.photo_filename

    def attach_photo(self, stop: Stop, data: bytes, source_name: str = "") -> Stop:
        self._set_photo(stop, data, source_name)
        self.autosave()
        return stop

    def edit_stop(
        self,
        stop: Stop,
        name: Optional[str] = None,
        desc: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
    ) -> Stop:
        """Edit in place. Invalid coordinates keep the previous value.

        Mapped columns of the stop's original row follow the edit so an
        original-header export carries it.
        """
        mapping = self.column_mapping
        row = stop.original_row

        if name is not None:
            stop.stop_name = name.strip()
            if mapping.name_col and row:
                row[mapping.name_col] = stop.stop_name
        if desc is not None:
            stop.stop_desc = desc.strip()
            if mapping.desc_col and row:
                row[mapping.desc_col] = stop.stop_desc
        if lat is not None and math.isfinite(lat):
            stop.stop_lat = lat
            if mapping.lat_col and row:
                row[mapping.lat_col] = format_value(lat)
        if lon is not None and math.isfinite(lon):
            stop.stop_lon = lon
            if mapping.lon_col and row:
                row[mapping.lon_col] = format_value(lon)

        self.autosave()
        return stop

    def move_stop(self, stop: Stop, lat: float, lon: float) -> Stop:
        return self.edit_stop(stop, lat=lat, lon=lon)

    def delete_stop(self, stop: Stop) -> None:
        """Remove this stop only; other stops sharing its id stay."""
        self.stops = [s for s in self.stops if s is not stop]
        self.autosave()

    # --- import ---

    def apply_import(self, result: ImportResult) -> ImportResult:
        self.stops = result.stops
        if result.kind in (SourceKind.CANONICAL, SourceKind.HEURISTIC):
            self.original_header = result.original_header
        else:
            self.original_header = None
        self.column_mapping = result.column_mapping
        self.autosave()
        return result

    def import_delimited(self, text: str) -> ImportResult:
        return self.apply_import(normalize_delimited(text, self.id_source))

    def import_json(self, text: str) -> ImportResult:
        return self.apply_import(normalize_json(text, self.id_source))

    def import_file(self, filename: str, content: bytes) -> ImportResult:
        """Dispatch on extension: .json is an object array, anything else delimited text."""
        text = decode_upload(content)
        if filename.lower().endswith(".json"):
            return self.import_json(text)
        return self.import_delimited(text)

    async def load_from_api(self, url: str, http_client: Optional[httpx.AsyncClient] = None) -> ImportResult:
        payload = await remote_api.fetch_remote_stops(url, http_client)
        return self.apply_import(normalize_remote(payload, self.id_source))

    async def push_stop(
        self, base_url: str, stop: Stop, http_client: Optional[httpx.AsyncClient] = None,
    ) -> dict:
        updated_at = exporter.iso_timestamp(self.clock())
        return await remote_api.put_stop(base_url, stop, updated_at, http_client)

    # --- export / queries ---

    def export(self, fmt: str = "txt", api_mode: bool = False, include_images: bool = False) -> ExportFile:
        return exporter.build_export(
            self.stops,
            fmt=fmt,
            api_mode=api_mode,
            original_header=self.original_header,
            mapping=self.column_mapping,
            include_images=include_images,
            now=self.clock(),
        )

    def next_departures(
        self,
        stop: Stop,
        index: ScheduleIndex,
        at_time: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[Departure]:
        return index.next_departures(stop.stop_code, at_time, limit)
