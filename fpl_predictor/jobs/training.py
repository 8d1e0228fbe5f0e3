"""Training job: finished fixtures -> trained model + TrainingRun row."""

import asyncio
import logging
import time

from fpl_predictor.config import Settings
from fpl_predictor.errors import InsufficientDataError, PredictorError, short_message
from fpl_predictor.features.engineering import FeatureEngineer
from fpl_predictor.jobs.results import TrainingFailure, TrainingResult, TrainingSuccess
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.ml.persistence import persist_training_run
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import capture_exception, record_pipeline_run

logger = logging.getLogger(__name__)


async def run_training(
    engine: MLPEngine,
    storage: Storage,
    feature_engineer: FeatureEngineer,
    settings: Settings,
) -> TrainingResult:
    start = time.time()

    try:
        training_set = await feature_engineer.build_training_set(
            min_samples=settings.TRAIN_MIN_SAMPLES,
            policy=settings.TRAIN_SAMPLE_POLICY,
            seed=settings.TRAIN_RANDOM_SEED,
        )
        metrics = await asyncio.to_thread(engine.train, training_set.features, training_set.labels)
        duration_ms = int((time.time() - start) * 1000)
        run = await persist_training_run(storage, engine, metrics, training_set, duration_ms)

    except InsufficientDataError as e:
        logger.warning(f"Training rejected: {e.message}")
        record_pipeline_run("train", "error", (time.time() - start) * 1000)
        return TrainingFailure(
            kind=e.kind,
            message=e.message,
            available=e.available,
            required=e.required,
        )
    except PredictorError as e:
        logger.error(f"Training failed: {e.message} ({e.details})")
        capture_exception(e, pipeline="train")
        record_pipeline_run("train", "error", (time.time() - start) * 1000)
        return TrainingFailure(kind=e.kind, message=e.message)
    except Exception as e:
        logger.exception("Training failed with an unexpected error")
        capture_exception(e, pipeline="train")
        record_pipeline_run("train", "error", (time.time() - start) * 1000)
        return TrainingFailure(kind="model_error", message=short_message(e))

    record_pipeline_run("train", "ok", duration_ms)
    return TrainingSuccess(
        metrics=metrics,
        model_version=engine.model_version,
        training_run_id=run.id,
        real_samples=training_set.real_samples,
        synthetic_samples=training_set.synthetic_samples,
        duration_ms=duration_ms,
    )
