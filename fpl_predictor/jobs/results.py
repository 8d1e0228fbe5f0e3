"""Tagged result types returned by the sync, training and generation jobs.

Each job returns exactly one of two variants so callers handle both cases
explicitly. ``to_dict()`` renders the JSON payload served by the routes.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional, Union

from fpl_predictor.ml.engine import TrainingMetrics
from fpl_predictor.models import Prediction


def _percent(value: float) -> int:
    return int(round(value * 100))


def render_prediction(prediction: Prediction, team_names: dict[int, str]) -> dict:
    """Client-facing view of a stored prediction, probabilities as percents."""
    return {
        "id": prediction.id,
        "fixture_id": prediction.fixture_id,
        "home_team": team_names.get(prediction.home_team_id, f"Team {prediction.home_team_id}"),
        "away_team": team_names.get(prediction.away_team_id, f"Team {prediction.away_team_id}"),
        "gameweek": prediction.gameweek,
        "prediction": prediction.predicted_outcome,
        "confidence": _percent(prediction.confidence),
        "probabilities": {
            "home_win": _percent(prediction.home_win_prob),
            "draw": _percent(prediction.draw_prob),
            "away_win": _percent(prediction.away_win_prob),
        },
        "model_version": prediction.model_version,
        "created_at": prediction.created_at.isoformat() if prediction.created_at else None,
    }


# =============================================================================
# SYNC
# =============================================================================


@dataclass
class SyncCounts:
    teams: int = 0
    players: int = 0
    fixtures: int = 0
    current_gameweek: Optional[int] = None


@dataclass
class SyncSuccess:
    counts: SyncCounts
    success: bool = field(default=True, init=False)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": "FPL data synchronized successfully",
            "counts": asdict(self.counts),
            "errors": [],
        }


@dataclass
class SyncPartialFailure:
    counts: SyncCounts
    errors: list[str]
    success: bool = field(default=False, init=False)

    def to_dict(self) -> dict:
        return {
            "success": False,
            "message": "Data sync completed with errors",
            "counts": asdict(self.counts),
            "errors": list(self.errors),
        }


SyncResult = Union[SyncSuccess, SyncPartialFailure]


# =============================================================================
# TRAINING
# =============================================================================


@dataclass
class TrainingSuccess:
    metrics: TrainingMetrics
    model_version: str
    training_run_id: Optional[int]
    real_samples: int
    synthetic_samples: int
    duration_ms: int
    success: bool = field(default=True, init=False)

    def to_dict(self) -> dict:
        m = self.metrics
        return {
            "success": True,
            "message": "Model training completed successfully",
            "counts": {
                "training_samples": self.real_samples + self.synthetic_samples,
                "real_samples": self.real_samples,
                "synthetic_samples": self.synthetic_samples,
            },
            "metrics": {
                "accuracy": round(m.accuracy, 4),
                "loss": round(m.loss, 4),
                "val_accuracy": None if m.val_accuracy is None else round(m.val_accuracy, 4),
                "val_loss": None if m.val_loss is None else round(m.val_loss, 4),
                "epochs": m.epochs,
            },
            "model_version": self.model_version,
            "training_run_id": self.training_run_id,
            "training_duration_ms": self.duration_ms,
            "errors": [],
        }


@dataclass
class TrainingFailure:
    kind: str
    message: str
    available: Optional[int] = None
    required: Optional[int] = None
    success: bool = field(default=False, init=False)

    def to_dict(self) -> dict:
        payload = {
            "success": False,
            "error": self.kind,
            "message": "Model training failed",
            "errors": [self.message],
        }
        if self.required is not None:
            payload["counts"] = {"available": self.available, "required": self.required}
        return payload


TrainingResult = Union[TrainingSuccess, TrainingFailure]


# =============================================================================
# GENERATION
# =============================================================================


@dataclass
class GenerationSuccess:
    attempted: int
    predictions: list[dict]
    model_version: str
    errors: list[str] = field(default_factory=list)
    success: bool = field(default=True, init=False)

    @property
    def saved(self) -> int:
        return len(self.predictions)

    def to_dict(self) -> dict:
        if self.attempted == 0:
            message = "No upcoming fixtures available for prediction"
        else:
            message = f"Generated {self.saved}/{self.attempted} predictions"
        return {
            "success": True,
            "message": message,
            "counts": {"attempted": self.attempted, "saved": self.saved},
            "predictions": self.predictions,
            "model_version": self.model_version,
            "errors": list(self.errors),
        }


@dataclass
class GenerationSkipped:
    reason: str
    guidance: list[str]
    success: bool = field(default=True, init=False)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": self.reason,
            "counts": {"attempted": 0, "saved": 0},
            "predictions": [],
            "next_steps": list(self.guidance),
            "errors": [],
        }


GenerationResult = Union[GenerationSuccess, GenerationSkipped]
