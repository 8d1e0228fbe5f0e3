"""Core routes: health, metrics, system status.

Auth per-endpoint:
- /health: public
- /metrics: Bearer token when METRICS_BEARER_TOKEN is set
- /api/system/status: public, rate limited per client IP
"""

import logging
import time
from datetime import timedelta

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from fpl_predictor.config import Settings
from fpl_predictor.deps import get_app_settings, get_engine, get_provider, get_storage
from fpl_predictor.etl.base import DataProvider
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.models import utcnow
from fpl_predictor.responses import utc_timestamp
from fpl_predictor.security import limiter, public_rate_limit
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import get_metrics_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=["core"])

FRESHNESS_WINDOW = timedelta(hours=24)
_STARTED_AT = time.time()


class HealthResponse(BaseModel):
    status: str
    model_loaded: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: MLPEngine = Depends(get_engine)):
    """Health check endpoint."""
    return HealthResponse(status="ok", model_loaded=engine.is_loaded)


@router.get("/metrics")
async def prometheus_metrics(
    authorization: str = Header(None, alias="Authorization"),
    settings: Settings = Depends(get_app_settings),
):
    """Prometheus exposition for gate, provider and pipeline metrics."""
    expected_token = settings.METRICS_BEARER_TOKEN
    if expected_token:
        if not authorization:
            return PlainTextResponse(
                content="# Unauthorized: Missing Authorization header\n",
                status_code=401,
                media_type="text/plain",
            )
        parts = authorization.split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer" or parts[1] != expected_token:
            return PlainTextResponse(
                content="# Unauthorized: Invalid token\n",
                status_code=401,
                media_type="text/plain",
            )

    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)


def overall_status(operational: int, total: int) -> str:
    if operational == total:
        return "Fully Operational"
    if operational >= 2:
        return "Partially Operational"
    return "Degraded"


@router.get("/api/system/status")
@limiter.limit(public_rate_limit)
async def system_status(
    request: Request,
    storage: Storage = Depends(get_storage),
    engine: MLPEngine = Depends(get_engine),
    provider: DataProvider = Depends(get_provider),
):
    """Health of database, model artifact, FPL API and prediction freshness."""
    components = {
        "database": False,
        "ml_model": False,
        "fpl_api": False,
        "data_freshness": False,
    }

    try:
        components["database"] = await storage.ping()
    except Exception as e:
        logger.error(f"Database check failed: {e}")

    components["ml_model"] = engine.artifact_exists()

    try:
        components["fpl_api"] = await provider.check_health()
    except Exception as e:
        logger.error(f"FPL API check failed: {e}")

    try:
        latest = await storage.get_latest_predictions(1)
        if latest:
            components["data_freshness"] = latest[0].created_at > utcnow() - FRESHNESS_WINDOW
    except Exception as e:
        logger.error(f"Data freshness check failed: {e}")

    operational = sum(1 for ok in components.values() if ok)
    return {
        "success": True,
        "status": overall_status(operational, len(components)),
        "components": components,
        "health_score": f"{operational}/{len(components)}",
        "uptime_seconds": round(time.time() - _STARTED_AT, 1),
        "timestamp": utc_timestamp(),
    }
