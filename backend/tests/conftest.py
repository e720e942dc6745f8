import itertools

import pytest

from stopsync.persistence import MemoryStore
from stopsync.session import StopSession

HEURISTIC_TXT = (
    "Name,Latitude,Longitude,Notes,Zone\n"
    'Main St,43.650000,-79.380000,"near bank, north side",Z1\n'
    "King St,43.6481,-79.3708,,Z2"
)

CANONICAL_TXT = (
    "stop_id,stop_code,stop_name,stop_desc,stop_lat,stop_lon,zone_id\n"
    "1001,S1001,Union,Front entrance,43.6453,-79.3806,A\n"
    '1002,S1002,"St Andrew, west",,43.6476,-79.3848,B'
)

FEED = {
    "stops.txt": "stop_id,stop_name,stop_lat,stop_lon\nS1,Union,43.6453,-79.3806\n",
    "stop_times.txt": (
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
        "tripA,08:00:00,08:00:00,S1,1\n"
        "tripB,09:30:00,09:30:00,S1,1\n"
        "tripC,07:00:00,07:00:00,S1,1\n"
    ),
    "trips.txt": "route_id,service_id,trip_id\nR1,WK,tripA\nR2,WK,tripB\nR1,WK,tripC\n",
    "routes.txt": "route_id,route_short_name,route_long_name\nR1,10,Main Line\nR2,,Crosstown\n",
}


@pytest.fixture
def id_source():
    return itertools.count(1700000000000).__next__


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def session(store, id_source):
    return StopSession(store=store, id_source=id_source)
