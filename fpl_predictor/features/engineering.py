"""Feature engineering for match outcome prediction."""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from fpl_predictor.errors import InsufficientDataError
from fpl_predictor.models import Fixture, Player, Team
from fpl_predictor.storage.base import Storage

logger = logging.getLogger(__name__)

FEATURE_DIM = 20
NEUTRAL_VALUE = 0.5
SEASON_LENGTH = 38
H2H_MEETINGS = 10

FEATURE_COLUMNS = [
    # Strength (venue-specific FPL ratings, normalized)
    "home_strength_overall",
    "home_strength_attack",
    "home_strength_defence",
    "away_strength_overall",
    "away_strength_attack",
    "away_strength_defence",
    # Recent form
    "home_form_points",
    "home_form_goals_for",
    "home_form_goals_against",
    "away_form_points",
    "away_form_goals_for",
    "away_form_goals_against",
    # Head-to-head
    "h2h_home_wins",
    "h2h_draws",
    "h2h_away_wins",
    "h2h_experience",
    # Squad quality
    "home_avg_ict",
    "home_avg_form",
    "away_avg_ict",
    "away_avg_form",
]

FEATURE_SET_TAG = ["strength", "form", "h2h", "squad_quality", "context"]

# Labels: 0 = home win, 1 = draw, 2 = away win
HOME_WIN, DRAW, AWAY_WIN = 0, 1, 2

SAMPLE_POLICIES = ("augment", "strict")


def normalize_strength(value: Optional[int]) -> float:
    """Map an FPL strength rating (~1000-1400) onto [0, 1]."""
    if value is None:
        return NEUTRAL_VALUE
    return float(min(max((value - 1000) / 400, 0.0), 1.0))


def encode_result(home_score: int, away_score: int) -> int:
    if home_score > away_score:
        return HOME_WIN
    if home_score == away_score:
        return DRAW
    return AWAY_WIN


def pad_features(features: list[float], gameweek: int) -> list[float]:
    """
    Append contextual filler until the vector is FEATURE_DIM long.

    Filler order is home advantage, season progress, then neutral values.
    Real features are never dropped.
    """
    filler = [1.0, gameweek / SEASON_LENGTH]
    padded = list(features)
    while len(padded) < FEATURE_DIM:
        padded.append(filler.pop(0) if filler else NEUTRAL_VALUE)
    return padded


@dataclass
class TrainingSet:
    """Feature matrix and labels ready for the model."""

    features: np.ndarray
    labels: np.ndarray
    real_samples: int
    synthetic_samples: int

    @property
    def total_samples(self) -> int:
        return self.real_samples + self.synthetic_samples


class FeatureEngineer:
    """
    Builds the fixed-length vector for a (home, away, gameweek) triple.

    Used identically when assembling the training set and when predicting
    upcoming fixtures.
    """

    def __init__(self, storage: Storage, form_window: int = 5):
        self.storage = storage
        self.form_window = form_window

    async def extract_match_features(self, home_id: int, away_id: int, gameweek: int) -> list[float]:
        try:
            home_team = await self.storage.get_team(home_id)
            away_team = await self.storage.get_team(away_id)

            features = self._strength_features(home_team, away_team)
            features.extend(await self._form_features(home_id, gameweek))
            features.extend(await self._form_features(away_id, gameweek))
            features.extend(await self._head_to_head_features(home_id, away_id))
            features.extend(await self._squad_quality_features(home_id))
            features.extend(await self._squad_quality_features(away_id))

            vector = pad_features(features, gameweek)
            if not all(np.isfinite(vector)):
                raise ValueError("non-finite feature value")
            return vector

        except Exception as e:
            logger.warning(
                f"Feature extraction failed for {home_id} vs {away_id} (GW{gameweek}): {e}"
            )
            return [NEUTRAL_VALUE] * FEATURE_DIM

    def _strength_features(self, home: Optional[Team], away: Optional[Team]) -> list[float]:
        if home is None:
            home_values = [None, None, None]
        else:
            home_values = [home.strength_overall_home, home.strength_attack_home, home.strength_defence_home]
        if away is None:
            away_values = [None, None, None]
        else:
            away_values = [away.strength_overall_away, away.strength_attack_away, away.strength_defence_away]
        return [normalize_strength(v) for v in home_values + away_values]

    async def _form_features(self, team_id: int, gameweek: int) -> list[float]:
        """Average points, goals for and goals against over recent matches."""
        matches = await self.storage.get_team_fixtures_before(team_id, gameweek, self.form_window)
        if not matches:
            return [1.0, 1.0, 1.0]

        points = goals_for = goals_against = 0
        for match in matches:
            is_home = match.team_h == team_id
            scored = match.team_h_score if is_home else match.team_a_score
            conceded = match.team_a_score if is_home else match.team_h_score
            goals_for += scored
            goals_against += conceded
            if scored > conceded:
                points += 3
            elif scored == conceded:
                points += 1

        n = len(matches)
        return [points / n, goals_for / n, goals_against / n]

    async def _head_to_head_features(self, home_id: int, away_id: int) -> list[float]:
        meetings = await self.storage.get_head_to_head(home_id, away_id, limit=H2H_MEETINGS)
        home_wins = draws = away_wins = 0
        for match in meetings:
            if match.team_h_score == match.team_a_score:
                draws += 1
                continue
            winner = match.team_h if match.team_h_score > match.team_a_score else match.team_a
            if winner == home_id:
                home_wins += 1
            else:
                away_wins += 1
        experience = min(len(meetings) / H2H_MEETINGS, 1.0)
        return [float(home_wins), float(draws), float(away_wins), experience]

    async def _squad_quality_features(self, team_id: int) -> list[float]:
        players: list[Player] = [
            p for p in await self.storage.get_team_players(team_id) if (p.minutes or 0) > 0
        ]
        if not players:
            return [NEUTRAL_VALUE, NEUTRAL_VALUE]
        avg_ict = sum(p.ict_index or 0.0 for p in players) / len(players)
        avg_form = sum(p.form or 0.0 for p in players) / len(players)
        return [avg_ict, avg_form]

    async def features_for_fixture(self, fixture: Fixture) -> list[float]:
        return await self.extract_match_features(fixture.team_h, fixture.team_a, fixture.event or 1)

    async def build_training_set(
        self,
        min_samples: int,
        policy: str = "augment",
        seed: int = 42,
    ) -> TrainingSet:
        """
        Assemble features and labels from every finished fixture.

        Below ``min_samples`` the ``augment`` policy pads with seeded uniform
        random rows and random labels; ``strict`` raises InsufficientDataError.
        """
        if policy not in SAMPLE_POLICIES:
            raise ValueError(f"Unknown sample policy: {policy}")

        fixtures = await self.storage.get_finished_fixtures()
        logger.info(f"Preparing training data from {len(fixtures)} finished matches")

        rows: list[list[float]] = []
        labels: list[int] = []
        for fixture in fixtures:
            rows.append(await self.features_for_fixture(fixture))
            labels.append(encode_result(fixture.team_h_score, fixture.team_a_score))

        real = len(rows)
        synthetic = 0
        if real < min_samples:
            if policy == "strict":
                raise InsufficientDataError(
                    f"Need at least {min_samples} finished matches to train, found {real}",
                    available=real,
                    required=min_samples,
                )
            synthetic = min_samples - real
            logger.warning(
                f"Only {real} finished matches; adding {synthetic} synthetic samples to reach {min_samples}"
            )
            rng = np.random.default_rng(seed)
            rows.extend(rng.uniform(0.0, 1.0, size=(synthetic, FEATURE_DIM)).tolist())
            labels.extend(rng.integers(0, 3, size=synthetic).tolist())

        features = np.asarray(rows, dtype=float).reshape(-1, FEATURE_DIM)
        return TrainingSet(
            features=features,
            labels=np.asarray(labels, dtype=int),
            real_samples=real,
            synthetic_samples=synthetic,
        )
