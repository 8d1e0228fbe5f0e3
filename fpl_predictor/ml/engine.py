"""Feed-forward neural network engine for match outcome prediction."""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import numpy as np
from joblib import dump, load
from sklearn.metrics import accuracy_score, log_loss
from sklearn.model_selection import train_test_split
from sklearn.neural_network import MLPClassifier
from sklearn.preprocessing import StandardScaler

from fpl_predictor.config import Settings, get_settings
from fpl_predictor.errors import ModelError
from fpl_predictor.features.engineering import FEATURE_COLUMNS, FEATURE_DIM
from fpl_predictor.models import utcnow

logger = logging.getLogger(__name__)

CLASSES = np.array([0, 1, 2])
OUTCOME_LABELS = ("Home Win", "Draw", "Away Win")
HIDDEN_LAYERS = (128, 64, 32)
L2_PENALTY = 0.001
ARTIFACT_NAME = "model.joblib"

# Roughly the long-run Premier League home/draw/away split
FALLBACK_PROBABILITIES = (0.45, 0.27, 0.28)

# Below this the validation split is skipped and val metrics stay None
MIN_SAMPLES_FOR_VALIDATION = 10


@dataclass
class TrainingMetrics:
    """Final-epoch metrics of one training run."""

    accuracy: float
    loss: float
    val_accuracy: Optional[float]
    val_loss: Optional[float]
    train_samples: int
    val_samples: int
    epochs: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MatchPrediction:
    """Outcome distribution for one fixture."""

    home_win_prob: float
    draw_prob: float
    away_win_prob: float
    predicted_outcome: str
    confidence: float
    fallback: bool = False

    @classmethod
    def from_probabilities(cls, probabilities, fallback: bool = False) -> "MatchPrediction":
        home, draw, away = (float(p) for p in probabilities)
        index = int(np.argmax([home, draw, away]))
        return cls(
            home_win_prob=home,
            draw_prob=draw,
            away_win_prob=away,
            predicted_outcome=OUTCOME_LABELS[index],
            confidence=max(home, draw, away),
            fallback=fallback,
        )

    @classmethod
    def fallback_prediction(cls) -> "MatchPrediction":
        return cls.from_probabilities(FALLBACK_PROBABILITIES, fallback=True)


class MLPEngine:
    """
    Multi-layer perceptron classifier over the 20-feature match vector.

    Classes:
    - 0: Home Win
    - 1: Draw
    - 2: Away Win

    Inputs are standardized; the scaler and network are stored together in a
    single joblib artifact under MODEL_PATH.
    """

    FEATURE_COLUMNS = FEATURE_COLUMNS

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.model_version = self.settings.MODEL_VERSION
        # (network, scaler), always replaced as one pair
        self.fitted: Optional[tuple[MLPClassifier, StandardScaler]] = None
        self.trained_at = None
        self.model_path = Path(self.settings.MODEL_PATH)

    @property
    def artifact_path(self) -> Path:
        return self.model_path / ARTIFACT_NAME

    @property
    def model(self) -> Optional[MLPClassifier]:
        return self.fitted[0] if self.fitted else None

    @property
    def scaler(self) -> Optional[StandardScaler]:
        return self.fitted[1] if self.fitted else None

    @property
    def is_loaded(self) -> bool:
        """Check if model is loaded."""
        return self.fitted is not None

    def artifact_exists(self) -> bool:
        return self.artifact_path.exists()

    def _build_model(self, n_train: int) -> MLPClassifier:
        return MLPClassifier(
            hidden_layer_sizes=HIDDEN_LAYERS,
            activation="relu",
            solver="adam",
            alpha=L2_PENALTY,
            learning_rate_init=self.settings.TRAIN_LEARNING_RATE,
            batch_size=max(1, min(self.settings.TRAIN_BATCH_SIZE, n_train)),
            random_state=self.settings.TRAIN_RANDOM_SEED,
        )

    def train(self, features: np.ndarray, labels: np.ndarray) -> TrainingMetrics:
        """
        Fit the network epoch by epoch and save the artifact.

        Args:
            features: Array of shape (n_samples, 20).
            labels: Array of shape (n_samples,) with values in {0, 1, 2}.

        Returns:
            Final-epoch training and validation metrics.
        """
        X = np.asarray(features, dtype=float)
        y = np.asarray(labels, dtype=int)
        if X.ndim != 2 or X.shape[1] != FEATURE_DIM:
            raise ModelError(f"Expected feature matrix with {FEATURE_DIM} columns, got shape {X.shape}")
        if len(X) != len(y) or len(X) == 0:
            raise ModelError(f"Feature/label size mismatch: {len(X)} vs {len(y)}")

        epochs = self.settings.TRAIN_EPOCHS
        logger.info(f"Training model {self.model_version} with {len(X)} samples for {epochs} epochs")

        if len(X) >= MIN_SAMPLES_FOR_VALIDATION:
            X_train, X_val, y_train, y_val = train_test_split(
                X,
                y,
                test_size=self.settings.TRAIN_VALIDATION_SPLIT,
                random_state=self.settings.TRAIN_RANDOM_SEED,
            )
        else:
            X_train, y_train = X, y
            X_val = y_val = None

        scaler = StandardScaler().fit(X_train)
        X_train_scaled = scaler.transform(X_train)
        X_val_scaled = scaler.transform(X_val) if X_val is not None else None

        model = self._build_model(len(X_train))
        try:
            for epoch in range(epochs):
                model.partial_fit(X_train_scaled, y_train, classes=CLASSES)
                if (epoch + 1) % 10 == 0:
                    logger.info(f"Epoch {epoch + 1}/{epochs}: loss = {model.loss_:.4f}")
        except ValueError as e:
            raise ModelError("Training failed", details=str(e)) from e

        accuracy = float(accuracy_score(y_train, model.predict(X_train_scaled)))
        loss = float(model.loss_)
        val_accuracy = val_loss = None
        if X_val_scaled is not None and len(X_val_scaled):
            val_proba = model.predict_proba(X_val_scaled)
            val_accuracy = float(accuracy_score(y_val, CLASSES[np.argmax(val_proba, axis=1)]))
            val_loss = float(log_loss(y_val, val_proba, labels=CLASSES))

        self.fitted = (model, scaler)
        self.trained_at = utcnow()
        self.save()

        metrics = TrainingMetrics(
            accuracy=accuracy,
            loss=loss,
            val_accuracy=val_accuracy,
            val_loss=val_loss,
            train_samples=len(X_train),
            val_samples=0 if X_val is None else len(X_val),
            epochs=epochs,
        )
        logger.info(
            f"Training complete: accuracy={accuracy:.4f}, loss={loss:.4f}, "
            f"val_accuracy={val_accuracy}, val_loss={val_loss}"
        )
        return metrics

    def save(self) -> Path:
        if not self.is_loaded:
            raise ModelError("No model trained to save")
        self.model_path.mkdir(parents=True, exist_ok=True)
        dump(
            {
                "model": self.model,
                "scaler": self.scaler,
                "model_version": self.model_version,
                "feature_columns": list(self.FEATURE_COLUMNS),
                "trained_at": self.trained_at,
            },
            self.artifact_path,
        )
        logger.info(f"Model saved to {self.artifact_path}")
        return self.artifact_path

    def load(self) -> bool:
        """
        Load the artifact from MODEL_PATH.

        Returns:
            True if model loaded successfully.
        """
        if not self.artifact_exists():
            logger.warning(f"No model artifact found at {self.artifact_path}")
            return False

        try:
            artifact = load(self.artifact_path)
            if artifact.get("feature_columns") != list(self.FEATURE_COLUMNS):
                logger.error("Model artifact was trained on a different feature layout, ignoring it")
                return False
            self.fitted = (artifact["model"], artifact["scaler"])
            self.trained_at = artifact.get("trained_at")
            logger.info(f"Model loaded from {self.artifact_path} ({artifact.get('model_version')})")
            return True
        except Exception as e:
            logger.error(f"Error loading model: {e}")
            self.fitted = None
            return False

    def predict_proba(self, features: list[float]) -> np.ndarray:
        fitted = self.fitted
        if fitted is None:
            raise ModelError("No model loaded")
        if len(features) != FEATURE_DIM:
            raise ModelError(f"Expected {FEATURE_DIM} features, got {len(features)}")

        model, scaler = fitted
        X = scaler.transform(np.asarray([features], dtype=float))
        raw = model.predict_proba(X)[0]
        probabilities = np.zeros(len(CLASSES))
        for cls, p in zip(model.classes_, raw):
            probabilities[int(cls)] = p
        return probabilities / probabilities.sum()

    def predict(self, features: list[float]) -> MatchPrediction:
        """Predict one fixture; any failure yields the fallback distribution."""
        try:
            return MatchPrediction.from_probabilities(self.predict_proba(features))
        except Exception as e:
            logger.warning(f"Prediction failed, using fallback distribution: {e}")
            return MatchPrediction.fallback_prediction()
