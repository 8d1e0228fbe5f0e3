"""Model training routes."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from fpl_predictor.config import Settings
from fpl_predictor.deps import get_app_settings, get_engine, get_feature_engineer, get_storage
from fpl_predictor.features.engineering import FeatureEngineer
from fpl_predictor.jobs.results import TrainingFailure
from fpl_predictor.jobs.training import run_training
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.responses import isoformat, success_body, utc_timestamp
from fpl_predictor.security import GatedRoute, get_request_api_key
from fpl_predictor.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/train", tags=["training"], route_class=GatedRoute)

HISTORY_LIMIT = 5


@router.post("/production")
async def train_production_model(
    request: Request,
    engine: MLPEngine = Depends(get_engine),
    storage: Storage = Depends(get_storage),
    feature_engineer: FeatureEngineer = Depends(get_feature_engineer),
    settings: Settings = Depends(get_app_settings),
):
    """Train the model on every finished fixture and record the run."""
    api_key = get_request_api_key(request)
    logger.info(f"Training requested by API key: {api_key.name}")

    result = await run_training(engine, storage, feature_engineer, settings)
    body = {**result.to_dict(), "timestamp": utc_timestamp()}

    if isinstance(result, TrainingFailure):
        status_code = 422 if result.kind == "insufficient_data" else 500
        return JSONResponse(status_code=status_code, content=body)
    return body


@router.get("/production")
async def training_status(
    request: Request,
    engine: MLPEngine = Depends(get_engine),
    storage: Storage = Depends(get_storage),
):
    """Whether a model is trained, plus recent training history."""
    history = await storage.get_training_history(HISTORY_LIMIT)
    last = history[0] if history else None
    model_trained = engine.artifact_exists()

    return success_body(
        status={
            "model_trained": model_trained,
            "model_loaded": engine.is_loaded,
            "last_training_time": isoformat(last.created_at) if last else None,
            "last_accuracy": last.accuracy if last else None,
            "model_version": last.model_version if last else engine.model_version,
            "total_training_runs": len(history),
            "system_ready": model_trained and last is not None,
        },
        history=[
            {
                "id": run.id,
                "date": isoformat(run.created_at),
                "accuracy": run.accuracy,
                "loss": run.loss,
                "val_accuracy": run.val_accuracy,
                "val_loss": run.val_loss,
                "samples": run.training_samples,
                "synthetic_samples": run.synthetic_samples,
                "training_duration_ms": run.training_duration_ms,
                "version": run.model_version,
            }
            for run in history
        ],
    )
