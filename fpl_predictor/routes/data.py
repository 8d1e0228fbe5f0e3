"""Data sync routes."""

import logging

from fastapi import APIRouter, Depends, Request

from fpl_predictor.deps import get_provider, get_storage
from fpl_predictor.etl.base import DataProvider
from fpl_predictor.jobs.sync import run_sync
from fpl_predictor.responses import isoformat, success_body, utc_timestamp
from fpl_predictor.security import GatedRoute, get_request_api_key
from fpl_predictor.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/data", tags=["data"], route_class=GatedRoute)


@router.post("/sync")
async def sync_data(
    request: Request,
    provider: DataProvider = Depends(get_provider),
    storage: Storage = Depends(get_storage),
):
    """Fetch teams, players, fixtures and the current gameweek from the FPL API."""
    api_key = get_request_api_key(request)
    logger.info(f"Data sync requested by API key: {api_key.name}")

    result = await run_sync(provider, storage)
    return {**result.to_dict(), "api_key": api_key.name, "timestamp": utc_timestamp()}


@router.get("/sync")
async def sync_status(request: Request, storage: Storage = Depends(get_storage)):
    """Stored entity counts and the outcome of the last sync."""
    api_key = get_request_api_key(request)
    counts = await storage.count_entities()
    last_run = await storage.get_last_sync_run()

    last_sync = None
    if last_run is not None:
        last_sync = {
            "started_at": isoformat(last_run.started_at),
            "finished_at": isoformat(last_run.finished_at),
            "success": last_run.success,
            "teams": last_run.teams,
            "players": last_run.players,
            "fixtures": last_run.fixtures,
            "current_gameweek": last_run.current_gameweek,
            "errors": last_run.errors or [],
        }

    return success_body(
        sync_status={
            "last_sync_time": last_sync["finished_at"] if last_sync else None,
            "system_ready": counts.has_league_data,
            "counts": {
                "teams": counts.teams,
                "players": counts.players,
                "fixtures": counts.fixtures,
                "finished_fixtures": counts.finished_fixtures,
            },
        },
        last_sync=last_sync,
        api_key=api_key.name,
    )
