import json
from datetime import datetime, timezone

import pytest

from conftest import CANONICAL_TXT, HEURISTIC_TXT
from stopsync.exporter import (
    build_export,
    export_api_text,
    export_fallback_text,
    export_json,
    export_original_text,
    iso_timestamp,
)
from stopsync.models import ColumnMapping, Stop
from stopsync.normalizer import normalize_delimited, normalize_remote

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
TS = "2024-01-01T00:00:00.000Z"


def _stop(**kwargs) -> Stop:
    fields = dict(stop_id=1, stop_code="S1", stop_lat=43.65, stop_lon=-79.38)
    fields.update(kwargs)
    return Stop(**fields)


def test_iso_timestamp():
    assert iso_timestamp(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)) == "2024-01-01T12:00:00.000Z"


def test_heuristic_round_trip_is_byte_for_byte(id_source):
    result = normalize_delimited(HEURISTIC_TXT, id_source)
    out = export_original_text(result.stops, result.original_header, result.column_mapping)
    assert out == HEURISTIC_TXT


def test_canonical_round_trip_is_byte_for_byte():
    result = normalize_delimited(CANONICAL_TXT)
    out = export_original_text(result.stops, result.original_header, result.column_mapping)
    assert out == CANONICAL_TXT


def test_original_export_overlays_current_values(id_source):
    result = normalize_delimited(HEURISTIC_TXT, id_source)
    stop = result.stops[0]
    stop.stop_name = 'Main "North", St'
    stop.stop_lat = 44.1

    lines = export_original_text(result.stops, result.original_header, result.column_mapping).split("\n")
    assert lines[1] == '"Main ""North"", St",44.1,-79.380000,"near bank, north side",Z1'
    assert lines[2] == "King St,43.6481,-79.3708,,Z2"


def test_original_export_canonical_columns_follow_edits():
    result = normalize_delimited(CANONICAL_TXT)
    result.stops[0].stop_desc = "Moved to Bay St"

    lines = export_original_text(result.stops, result.original_header, result.column_mapping).split("\n")
    assert lines[1] == "1001,S1001,Union,Moved to Bay St,43.6453,-79.3806,A"


def test_original_export_stop_without_original_row(id_source):
    result = normalize_delimited(HEURISTIC_TXT, id_source)
    captured = _stop(stop_name="New", stop_lat=43.7, stop_lon=-79.4)

    out = export_original_text([captured], result.original_header, result.column_mapping)
    assert out.split("\n")[1] == "New,43.7,-79.4,,"


def test_original_export_image_column_only_when_photo_present():
    text = "name,lat,lon,photo\nA,1,2,old.jpg\nB,3,4,keep.jpg"
    result = normalize_delimited(text, lambda: 9)
    result.stops[0].photo_filename = "img1_000000_2_000000.jpg"
    result.stops[1].photo_filename = ""

    lines = export_original_text(result.stops, result.original_header, result.column_mapping).split("\n")
    assert lines[1] == "A,1,2,img1_000000_2_000000.jpg"
    assert lines[2] == "B,3,4,keep.jpg"


def test_original_export_heuristic_stop_id_column_gets_generated_id():
    text = "Stop_ID,lat,lon,other\nX9,1,2,o"
    result = normalize_delimited(text, lambda: 1700000000000)
    out = export_original_text(result.stops, result.original_header, result.column_mapping)
    assert out.split("\n")[1] == "1700000000000,1,2,o"


def test_api_text_uses_remote_schema():
    payload = {"allBusStops": [
        {"id": 7, "name": "Depot, East", "latitude": 43.1, "longitude": -79.2,
         "district": "East", "is_active": False, "capacity": 12},
    ]}
    stops = normalize_remote(payload).stops
    stops[0].stop_desc = 'Gate "B"'

    header, row = export_api_text(stops, TS).split("\n")
    assert header == (
        "id,name,alias,district,type,latitude,longitude,is_active,description,"
        "capacity,operating_hours,nearby_landmarks,highway,created_at,updated_at"
    )
    assert row == ",".join([
        "7", '"Depot, East"', "", "East", "", "43.1", "-79.2", "false", '"Gate ""B"""',
        "12", "", "", "", "", TS,
    ])


def test_json_export_passes_through_original_fields(id_source):
    stops = normalize_delimited(HEURISTIC_TXT, id_source).stops
    rows = json.loads(export_json(stops, TS))

    assert rows[0]["Zone"] == "Z1"
    assert rows[0]["Notes"] == "near bank, north side"
    assert rows[0]["id"] == 1700000000000
    assert rows[0]["name"] == "Main St"
    assert rows[0]["latitude"] == 43.65
    assert rows[0]["updated_at"] == TS


def test_fallback_text_always_quotes_name_and_description():
    stops = [_stop(stop_id=1700000000000, stop_code="S1700000000000", stop_name='Say "hi"')]
    out = export_fallback_text(stops)
    assert out == (
        "stop_id,stop_code,stop_name,stop_desc,stop_lat,stop_lon\n"
        '1700000000000,S1700000000000,"Say ""hi""","",43.65,-79.38'
    )


def test_fallback_text_with_images():
    out = export_fallback_text([_stop(photo_filename="img.jpg")], include_images=True)
    assert out.split("\n") == [
        "stop_id,stop_code,stop_name,stop_desc,stop_lat,stop_lon,img_filename",
        '1,S1,"","",43.65,-79.38,img.jpg',
    ]


def test_build_export_picks_mode_and_filename():
    stops = [_stop()]
    header = ["name", "lat", "lon"]
    mapping = ColumnMapping(name_col="name", lat_col="lat", lon_col="lon")

    as_json = build_export(stops, "json", now=NOW)
    assert as_json.filename == "stopsExport1704067200000.json"
    assert as_json.media_type == "application/json"

    api = build_export(stops, "txt", api_mode=True, original_header=header, mapping=mapping, now=NOW)
    assert api.filename == "stopsExport1704067200000.txt"
    assert api.content.startswith("id,name,alias")

    original = build_export(stops, original_header=header, mapping=mapping, now=NOW)
    assert original.filename == "stopsExport1704067200000.txt"
    assert original.content == "name,lat,lon\n,43.65,-79.38"

    fallback = build_export(stops, now=NOW)
    assert fallback.filename == "stops1704067200000.txt"

    with_images = build_export(stops, include_images=True, now=NOW)
    assert with_images.filename == "stopsWithImages1704067200000.txt"


def test_build_export_rejects_unknown_format():
    with pytest.raises(ValueError):
        build_export([], "xml")


def test_original_export_normalizes_line_endings():
    text = "stop_id,stop_code,stop_name,stop_desc,stop_lat,stop_lon\r\n1,S1,A,,1.5,2.5\r\n"
    result = normalize_delimited(text)
    out = export_original_text(result.stops, result.original_header, result.column_mapping)
    assert out == "stop_id,stop_code,stop_name,stop_desc,stop_lat,stop_lon\n1,S1,A,,1.5,2.5"
