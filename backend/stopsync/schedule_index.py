import io
import logging
import os
import posixpath
import zipfile
from datetime import datetime
from typing import Mapping, Optional

import pandas as pd

from stopsync.errors import ImportFormatError
from stopsync.models import Departure, ScheduleSummary

logger = logging.getLogger("stopsync.schedule")

FEED_FILES = ("stops.txt", "stop_times.txt", "trips.txt", "routes.txt")

DEFAULT_LIMIT = 5


def current_time_string(now: Optional[datetime] = None) -> str:
    """Local wall-clock time in feed format, seconds zeroed ('08:05:00')."""
    if now is None:
        now = datetime.now()
    return now.strftime("%H:%M:00")


def _parse_frame(text: str) -> pd.DataFrame:
    return pd.read_csv(
        io.StringIO(text),
        dtype=str,
        keep_default_na=False,
        on_bad_lines="skip",
        skip_blank_lines=True,
    )


def _read_table(name: str, text: str) -> list[dict]:
    """Parse one feed file into row dicts of strings.

    Lines with more fields than the header are skipped; short lines are padded
    with empty strings. A line with an unterminated quote is dropped on its
    own instead of taking the rest of the file with it.
    """
    text = text.lstrip("\ufeff")
    try:
        df = _parse_frame(text)
    except pd.errors.EmptyDataError as e:
        logger.warning(f"Could not parse {name}: {e}")
        return []
    except pd.errors.ParserError as e:
        lines = text.splitlines()
        kept = [line for line in lines if line.count('"') % 2 == 0]
        logger.warning(f"{name}: {e}; dropping {len(lines) - len(kept)} lines with unbalanced quotes")
        try:
            df = _parse_frame("\n".join(kept))
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            logger.warning(f"Could not parse {name}: {e}")
            return []

    df.columns = [str(c).strip() for c in df.columns]
    df = df.fillna("")
    return df.to_dict("records")


class ScheduleIndex:
    """Cross-referenced lookup tables for a static GTFS-style schedule feed.

    Tables are keyed by identifier string. stop_times keeps each stop's
    entries in feed order; nothing is sorted and references between files are
    not checked until query time.
    """

    def __init__(self):
        self.stops_meta: dict[str, dict] = {}
        self.trips: dict[str, dict] = {}
        self.routes: dict[str, dict] = {}
        self.stop_times: dict[str, list[dict]] = {}
        self.is_loaded = False

    def load(self, feed_files: Mapping[str, str]) -> "ScheduleIndex":
        """Build the tables from named text blobs. Missing files are skipped."""
        self.stops_meta, self.trips, self.routes, self.stop_times = {}, {}, {}, {}

        for name in FEED_FILES:
            text = feed_files.get(name)
            if text is None:
                logger.info(f"Feed file not provided: {name}")
                continue

            rows = _read_table(name, text)
            if name == "stops.txt":
                self._index_by(rows, "stop_id", self.stops_meta)
            elif name == "trips.txt":
                self._index_by(rows, "trip_id", self.trips)
            elif name == "routes.txt":
                self._index_by(rows, "route_id", self.routes)
            else:
                for row in rows:
                    self.stop_times.setdefault(row.get("stop_id", ""), []).append(row)
            logger.info(f"Loaded {name}: {len(rows)} rows")

        self.is_loaded = True
        return self

    @staticmethod
    def _index_by(rows: list[dict], key: str, table: dict[str, dict]) -> None:
        for row in rows:
            ident = row.get(key, "")
            if ident:
                table[ident] = row

    def load_zip(self, data: bytes) -> "ScheduleIndex":
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as e:
            raise ImportFormatError(f"Schedule feed is not a valid zip archive: {e}") from e

        files = {}
        with archive:
            for member in archive.namelist():
                base = posixpath.basename(member)
                if base in FEED_FILES and base not in files:
                    files[base] = archive.read(member).decode("utf-8-sig", errors="replace")
        return self.load(files)

    def load_path(self, path: str) -> "ScheduleIndex":
        """Load from a directory holding the feed files, or from a .zip file."""
        if os.path.isdir(path):
            files = {}
            for name in FEED_FILES:
                fpath = os.path.join(path, name)
                if os.path.exists(fpath):
                    with open(fpath, "r", encoding="utf-8-sig") as f:
                        files[name] = f.read()
                else:
                    logger.warning(f"Schedule file not found: {fpath}")
            return self.load(files)

        with open(path, "rb") as f:
            return self.load_zip(f.read())

    def next_departures(
        self, stop_code: str, at_time: Optional[str] = None, limit: int = DEFAULT_LIMIT,
    ) -> list[Departure]:
        """Departures at or after at_time, in feed order, at most `limit`.

        Times compare as HH:MM:SS strings, so a past-midnight time such as
        '25:10:00' sorts after every same-day time. Entries whose trip or
        route cannot be resolved are dropped after truncation.
        """
        entries = self.stop_times.get(str(stop_code))
        if not entries:
            return []

        if at_time is None:
            at_time = current_time_string()

        upcoming = [e for e in entries if e.get("departure_time", "") >= at_time][: max(limit, 0)]

        results = []
        for entry in upcoming:
            trip = self.trips.get(entry.get("trip_id", ""))
            route = self.routes.get(trip.get("route_id", "")) if trip else None
            if route is None:
                logger.debug(f"Dangling trip/route for {stop_code} trip {entry.get('trip_id')!r}")
                continue
            results.append(Departure(
                departure_time=entry["departure_time"],
                route_name=route.get("route_short_name") or route.get("route_long_name") or "",
                trip_id=entry.get("trip_id", ""),
                route_id=trip.get("route_id", ""),
            ))
        return results

    def summary(self) -> ScheduleSummary:
        return ScheduleSummary(
            loaded=self.is_loaded,
            stops=len(self.stops_meta),
            trips=len(self.trips),
            routes=len(self.routes),
            stop_times=sum(len(v) for v in self.stop_times.values()),
        )
