"""Prediction routes."""

import logging

from fastapi import APIRouter, Depends, Query, Request

from fpl_predictor.config import Settings
from fpl_predictor.deps import get_app_settings, get_engine, get_feature_engineer, get_storage
from fpl_predictor.features.engineering import FeatureEngineer
from fpl_predictor.jobs.generation import run_generation
from fpl_predictor.jobs.results import render_prediction
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.responses import isoformat, success_body, utc_timestamp
from fpl_predictor.security import GatedRoute, get_request_api_key
from fpl_predictor.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/predict", tags=["predictions"], route_class=GatedRoute)

MAX_LATEST = 50


@router.post("/generate")
async def generate_predictions(
    request: Request,
    engine: MLPEngine = Depends(get_engine),
    storage: Storage = Depends(get_storage),
    feature_engineer: FeatureEngineer = Depends(get_feature_engineer),
    settings: Settings = Depends(get_app_settings),
):
    """Predict upcoming fixtures, or explain which pipeline step is missing."""
    api_key = get_request_api_key(request)
    logger.info(f"Prediction generation requested by API key: {api_key.name}")

    result = await run_generation(engine, storage, feature_engineer, settings.UPCOMING_FIXTURES_LIMIT)
    return {**result.to_dict(), "api_key": api_key.name, "timestamp": utc_timestamp()}


@router.get("/generate")
async def generation_status(
    request: Request,
    engine: MLPEngine = Depends(get_engine),
    storage: Storage = Depends(get_storage),
):
    api_key = get_request_api_key(request)
    recent = await storage.get_latest_predictions(10)
    upcoming = await storage.get_upcoming_fixtures(10)
    team_names = await storage.get_team_names()

    return success_body(
        status={
            "recent_predictions": len(recent),
            "upcoming_fixtures": len(upcoming),
            "last_generation_time": isoformat(recent[0].created_at) if recent else None,
            "model_loaded": engine.is_loaded,
            "model_version": engine.model_version,
        },
        recent_predictions=[render_prediction(p, team_names) for p in recent[:5]],
        api_key=api_key.name,
    )


@router.get("/latest")
async def latest_predictions(
    request: Request,
    limit: int = Query(10, ge=1),
    storage: Storage = Depends(get_storage),
):
    """Most recent predictions, capped at 50."""
    limit = min(limit, MAX_LATEST)
    predictions = await storage.get_latest_predictions(limit)
    team_names = await storage.get_team_names()

    return success_body(
        predictions=[render_prediction(p, team_names) for p in predictions],
        count=len(predictions),
        limit=limit,
    )
