"""Prediction generation job with pipeline-order guidance."""

import asyncio
import logging
import time

from fpl_predictor.features.engineering import FeatureEngineer
from fpl_predictor.jobs.results import (
    GenerationResult,
    GenerationSkipped,
    GenerationSuccess,
    render_prediction,
)
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.ml.predictions import predict_upcoming
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import record_pipeline_run

logger = logging.getLogger(__name__)

SYNC_GUIDANCE = [
    "sync: POST /api/data/sync to load teams, players and fixtures",
    "train: POST /api/train/production to train the model",
    "generate: POST /api/predict/generate again",
]

TRAIN_GUIDANCE = [
    "train: POST /api/train/production to train the model",
    "generate: POST /api/predict/generate again",
]


async def run_generation(
    engine: MLPEngine,
    storage: Storage,
    feature_engineer: FeatureEngineer,
    limit: int,
) -> GenerationResult:
    """
    Predict upcoming fixtures once league data and a trained model exist.

    Missing prerequisites are not errors: the result is skipped with the
    next pipeline steps, starting at the first one that is missing.
    """
    start = time.time()

    counts = await storage.count_entities()
    if not counts.has_league_data:
        logger.info("Generation skipped: no league data")
        record_pipeline_run("generate", "skipped", (time.time() - start) * 1000)
        return GenerationSkipped(
            reason="No league data available. Run a data sync first.",
            guidance=list(SYNC_GUIDANCE),
        )

    history = await storage.get_training_history(1)
    if not history or not engine.artifact_exists():
        logger.info("Generation skipped: no trained model")
        record_pipeline_run("generate", "skipped", (time.time() - start) * 1000)
        return GenerationSkipped(
            reason="No trained model available. Train the model first.",
            guidance=list(TRAIN_GUIDANCE),
        )

    if not engine.is_loaded and not await asyncio.to_thread(engine.load):
        logger.warning("Generation skipped: model artifact could not be loaded")
        record_pipeline_run("generate", "skipped", (time.time() - start) * 1000)
        return GenerationSkipped(
            reason="Stored model could not be loaded. Retrain the model.",
            guidance=list(TRAIN_GUIDANCE),
        )

    report = await predict_upcoming(engine, storage, feature_engineer, limit)
    team_names = await storage.get_team_names()

    record_pipeline_run("generate", "ok" if not report.errors else "partial", (time.time() - start) * 1000)
    return GenerationSuccess(
        attempted=report.attempted,
        predictions=[render_prediction(p, team_names) for p in report.predictions],
        model_version=engine.model_version,
        errors=report.errors,
    )
