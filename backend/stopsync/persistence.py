"""Key-value storage for the autosaved stop collection.

The host decides where data lives; the session only needs get/set/delete on
string keys. JsonFileStore keeps every key in one JSON document on disk.
"""

import json
import logging
import os
from typing import Optional, Protocol

from pydantic import ValidationError

from stopsync.models import ColumnMapping, Stop

logger = logging.getLogger("stopsync.persistence")

STOPS_KEY = "busStopsData"
SCHEMA_KEY = "busStopsSchema"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self):
        self.data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """Key-value pairs in one JSON file.

    Every set/delete rereads and rewrites the whole file with blocking I/O,
    also when called from an async route. That is fine for a few thousand
    stops; callers must not mutate one store from two sessions at once.
    """

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Store file unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


def save_state(
    store: KeyValueStore,
    stops: list[Stop],
    original_header: Optional[list[str]],
    mapping: ColumnMapping,
) -> None:
    store.set(STOPS_KEY, json.dumps([s.model_dump(mode="json") for s in stops]))
    store.set(SCHEMA_KEY, json.dumps({
        "original_header": original_header,
        "column_mapping": mapping.model_dump(),
    }))


def load_state(store: KeyValueStore) -> tuple[list[Stop], Optional[list[str]], ColumnMapping]:
    """Read back saved state. Missing or corrupt data yields an empty state."""
    raw = store.get(STOPS_KEY)
    if not raw:
        return [], None, ColumnMapping()

    try:
        stops = [Stop.model_validate(item) for item in json.loads(raw)]
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        logger.warning(f"Failed to load autosave: {e}")
        return [], None, ColumnMapping()

    header, mapping = None, ColumnMapping()
    schema_raw = store.get(SCHEMA_KEY)
    if schema_raw:
        try:
            schema = json.loads(schema_raw)
            header = schema.get("original_header")
            mapping = ColumnMapping.model_validate(schema.get("column_mapping") or {})
        except (json.JSONDecodeError, AttributeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable saved schema: {e}")
            header, mapping = None, ColumnMapping()

    return stops, header, mapping


def clear_state(store: KeyValueStore) -> None:
    store.delete(STOPS_KEY)
    store.delete(SCHEMA_KEY)
