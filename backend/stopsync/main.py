import logging
import os
from contextlib import asynccontextmanager

import httpx
from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that read env vars

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger("stopsync")
logging.basicConfig(level=logging.INFO)

DEFAULT_STORE_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "stops_store.json")

# Global state populated during startup
app_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Restore autosaved stops, load the schedule feed, open the HTTP client."""
    from stopsync.errors import ImportFormatError
    from stopsync.persistence import JsonFileStore
    from stopsync.schedule_index import ScheduleIndex
    from stopsync.session import StopSession

    store_path = os.getenv("STOPSYNC_STORE_PATH", DEFAULT_STORE_PATH)
    session = StopSession(store=JsonFileStore(store_path))
    session.load_autosave()
    app_state["session"] = session
    logger.info(f"Stop store: {store_path} ({len(session.stops)} stops)")

    schedule = ScheduleIndex()
    gtfs_path = os.getenv("STOPSYNC_GTFS_PATH", "")
    if gtfs_path and os.path.exists(gtfs_path):
        logger.info(f"Loading schedule feed from {gtfs_path}...")
        try:
            schedule.load_path(gtfs_path)
            summary = schedule.summary()
            logger.info(f"Schedule loaded: {summary.stops} stops, {summary.stop_times} stop times")
        except (ImportFormatError, OSError) as e:
            logger.warning(f"Could not load schedule feed {gtfs_path}: {e}")
            schedule = ScheduleIndex()
    elif gtfs_path:
        logger.warning(f"STOPSYNC_GTFS_PATH does not exist: {gtfs_path}")
    else:
        logger.info("No schedule feed configured; departures stay empty until one is uploaded")
    app_state["schedule"] = schedule

    http_client = httpx.AsyncClient(timeout=10.0)
    app_state["http_client"] = http_client

    yield

    logger.info("Shutting down...")
    session.autosave()
    await http_client.aclose()


app = FastAPI(title="StopSync API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("STOPSYNC_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from stopsync.routes import router  # noqa: E402

app.include_router(router, prefix="/api")
