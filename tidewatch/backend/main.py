"""
Tidewatch — Main FastAPI Application
Port vessel tracker: live AIS positions, scheduled moves and vessel particulars
"""

import logging
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import settings
from collectors.ais_collector import AisStreamCollector
from collectors.schedule_collector import ScheduleCollector
from collectors.vessel_info_collector import VesselInfoCollector
from tracking.exceptions import ConfigurationError, FeedError, VesselInfoError
from tracking.snapshot import SnapshotBuilder
from tracking.store import VesselStore

# ─── Logging ───────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(name)-20s │ %(levelname)-7s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("tidewatch.main")

# ─── Globals ───────────────────────────────────────
vessel_store = VesselStore()
ais_collector = AisStreamCollector(
    vessel_store,
    api_key=settings.aisstream_api_key,
    url=settings.aisstream_url,
    connect_timeout=settings.ais_connect_timeout,
)
snapshot_builder = SnapshotBuilder(
    ais_collector,
    settings.presets,
    default_preset=settings.default_preset,
    default_limit=settings.snapshot_limit,
    max_limit=settings.snapshot_max_limit,
    stale_minutes=settings.stale_minutes,
)
schedule_collector = ScheduleCollector(
    source_url=settings.schedule_source_url,
    timezone_name=settings.schedule_timezone,
)
vessel_info_collector = VesselInfoCollector(
    url_template=settings.vessel_info_url,
    ttl_seconds=settings.vessel_info_ttl_hours * 3600,
)

collectors = [ais_collector, schedule_collector, vessel_info_collector]


def get_snapshot_builder() -> SnapshotBuilder:
    return snapshot_builder


def get_schedule_collector() -> ScheduleCollector:
    return schedule_collector


def get_vessel_info_collector() -> VesselInfoCollector:
    return vessel_info_collector


def _json(model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(model.model_dump(mode="json", by_alias=True), status_code=status_code)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: start collectors on startup, stop on shutdown."""
    logger.info("═══════════════════════════════════════════════")
    logger.info("  TIDEWATCH — Port Vessel Tracker              ")
    logger.info("  Version %s", settings.app_version)
    logger.info("═══════════════════════════════════════════════")

    for collector in collectors:
        await collector.start()

    yield

    # Shutdown
    logger.info("Shutting down Tidewatch...")
    for collector in collectors:
        await collector.stop()


# ─── FastAPI App ───────────────────────────────────
app = FastAPI(
    title="Tidewatch",
    description="Port vessel tracker",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── REST Endpoints ───────────────────────────────
@app.get("/")
async def root():
    return {
        "name": "Tidewatch",
        "version": settings.app_version,
        "status": "operational",
        "ais_state": ais_collector.state.value,
        "tracked_vessels": len(vessel_store),
    }


@app.get("/api/ais-live")
async def get_ais_live(
    preset: Optional[str] = None,
    limit: Optional[int] = Query(None),
    builder: SnapshotBuilder = Depends(get_snapshot_builder),
):
    """Live vessels for a preset, nearest to its reference point first."""
    try:
        snapshot = await builder.build(preset, limit)
    except ConfigurationError as e:
        logger.error("Live tracking unavailable: %s", e)
        return _json(builder.failure(preset, e), status_code=500)
    except Exception as e:
        logger.exception("Live snapshot failed")
        return _json(builder.failure(preset, e), status_code=500)
    return _json(snapshot)


@app.get("/api/vessels/{key}")
async def get_vessel(key: str, builder: SnapshotBuilder = Depends(get_snapshot_builder)):
    """Look up one tracked vessel by ``MMSI:<9 digits>`` / ``IMO:<7 digits>``."""
    store = builder.connection.store
    try:
        vessel = store.lookup(key)
    except ValueError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
    if vessel is None:
        return JSONResponse({"ok": False, "error": f"Not tracked: {key}"}, status_code=404)
    return {"ok": True, "vessel": vessel.model_dump(mode="json", by_alias=True)}


@app.get("/api/presets")
async def get_presets(builder: SnapshotBuilder = Depends(get_snapshot_builder)):
    """Configured reference points and subscription boxes."""
    return {
        "count": len(builder.presets),
        "presets": [
            {
                "name": p.name,
                "label": p.label,
                "referencePoint": p.reference.model_dump(),
                "boundingBox": p.bbox.corners(),
            }
            for p in builder.presets.values()
        ],
    }


@app.get("/api/next-events")
async def get_next_events(
    window: str = "1h",
    dir: str = "next",
    schedule: ScheduleCollector = Depends(get_schedule_collector),
):
    """Arrivals and departures inside the requested window."""
    try:
        result = await schedule.collect(window, dir)
    except FeedError as e:
        logger.warning("Schedule feed error: %s", e)
        return JSONResponse({"ok": False, "error": str(e)}, status_code=502)
    return _json(result)


@app.get("/api/vessel-info")
async def get_vessel_info(
    imo: str = "",
    info: VesselInfoCollector = Depends(get_vessel_info_collector),
):
    """Static particulars (length, breadth, type, ...) for an IMO number."""
    try:
        result = await info.collect(imo)
    except ValueError:
        return JSONResponse({"ok": False, "error": "IMO must be 7 digits"}, status_code=400)
    except VesselInfoError:
        return JSONResponse({"ok": False}, status_code=502)
    return _json(result)


# ─── Run ───────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
