"""Batch prediction of upcoming fixtures."""

import asyncio
import logging
from dataclasses import dataclass, field

from fpl_predictor.errors import short_message
from fpl_predictor.features.engineering import FEATURE_SET_TAG, FeatureEngineer
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.models import Prediction
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import record_prediction_saved

logger = logging.getLogger(__name__)


@dataclass
class BatchPredictionReport:
    attempted: int = 0
    predictions: list[Prediction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return len(self.predictions)


async def predict_upcoming(
    engine: MLPEngine,
    storage: Storage,
    feature_engineer: FeatureEngineer,
    limit: int,
) -> BatchPredictionReport:
    """
    Predict and save every upcoming fixture independently.

    A fixture whose prediction or save fails is logged and skipped; the
    report carries how many of the attempted fixtures were saved.
    """
    report = BatchPredictionReport()
    fixtures = await storage.get_upcoming_fixtures(limit)
    report.attempted = len(fixtures)
    logger.info(f"Generating predictions for {len(fixtures)} upcoming fixtures")

    for fixture in fixtures:
        try:
            features = await feature_engineer.features_for_fixture(fixture)
            result = await asyncio.to_thread(engine.predict, features)
            prediction = await storage.save_prediction(
                Prediction(
                    fixture_id=fixture.id,
                    home_team_id=fixture.team_h,
                    away_team_id=fixture.team_a,
                    gameweek=fixture.event,
                    home_win_prob=result.home_win_prob,
                    draw_prob=result.draw_prob,
                    away_win_prob=result.away_win_prob,
                    predicted_outcome=result.predicted_outcome,
                    confidence=result.confidence,
                    model_version=engine.model_version,
                    features_used=list(FEATURE_SET_TAG),
                )
            )
            record_prediction_saved(result.fallback)
            report.predictions.append(prediction)
        except Exception as e:
            logger.error(f"Prediction for fixture {fixture.id} failed: {e}")
            report.errors.append(f"Fixture {fixture.id}: {short_message(e)}")

    logger.info(f"Saved {report.saved}/{report.attempted} predictions")
    return report
