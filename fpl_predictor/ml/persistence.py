"""Training-run persistence."""

import logging

from fpl_predictor.errors import PersistenceError, PredictorError
from fpl_predictor.features.engineering import FEATURE_SET_TAG, TrainingSet
from fpl_predictor.ml.engine import MLPEngine, TrainingMetrics
from fpl_predictor.models import TrainingRun
from fpl_predictor.storage.base import Storage

logger = logging.getLogger(__name__)


async def persist_training_run(
    storage: Storage,
    engine: MLPEngine,
    metrics: TrainingMetrics,
    training_set: TrainingSet,
    duration_ms: int,
) -> TrainingRun:
    """
    Save the audit row for a finished training run.

    The write must succeed: generation checks training history before
    predicting, so a lost row would hide a usable model. Any failure is
    raised as PersistenceError.

    Returns:
        The stored TrainingRun with its id assigned.
    """
    run = TrainingRun(
        model_version=engine.model_version,
        training_samples=training_set.total_samples,
        synthetic_samples=training_set.synthetic_samples,
        accuracy=metrics.accuracy,
        loss=metrics.loss,
        val_accuracy=metrics.val_accuracy,
        val_loss=metrics.val_loss,
        training_duration_ms=duration_ms,
        features_used=list(FEATURE_SET_TAG),
    )
    try:
        saved = await storage.save_training_run(run)
    except PredictorError:
        raise
    except Exception as e:
        logger.error(f"Failed to save training run: {e}")
        raise PersistenceError("Failed to save training run", details=str(e)) from e

    logger.info(f"Training run {saved.id} saved for model {engine.model_version}")
    return saved
