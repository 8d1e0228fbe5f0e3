"""Machine Learning module."""

from fpl_predictor.ml.engine import MatchPrediction, MLPEngine, TrainingMetrics
from fpl_predictor.ml.persistence import persist_training_run
from fpl_predictor.ml.predictions import BatchPredictionReport, predict_upcoming

__all__ = [
    "MLPEngine", "MatchPrediction", "TrainingMetrics",
    "persist_training_run",
    "predict_upcoming", "BatchPredictionReport",
]
