"""Abstract storage interface shared by the SQL and in-memory backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fpl_predictor.etl.base import FixtureData, PlayerData, TeamData
from fpl_predictor.models import (
    ApiKey,
    ApiUsageDailyStat,
    ApiUsageEvent,
    Fixture,
    Player,
    Prediction,
    SyncRun,
    Team,
    TrainingRun,
)


@dataclass
class EntityCounts:
    """Row counts used by status endpoints and pipeline prerequisites."""

    teams: int = 0
    players: int = 0
    fixtures: int = 0
    finished_fixtures: int = 0
    predictions: int = 0
    training_runs: int = 0

    @property
    def has_league_data(self) -> bool:
        return self.teams > 0 and self.players > 0 and self.fixtures > 0


@dataclass
class ApiKeySummary:
    """API key with aggregated usage, for the admin listing."""

    api_key: ApiKey
    total_requests: int
    last_request: Optional[datetime]


class Storage(ABC):
    """
    Persistence contract for the whole service.

    Orchestrators, the feature engineer and the request gate depend only on
    this interface. Upserts are keyed by natural id, so repeated syncs of the
    same upstream data are idempotent.
    """

    # --- health -----------------------------------------------------------

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend answers a trivial query."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    # --- league data ------------------------------------------------------

    @abstractmethod
    async def upsert_teams(self, teams: list[TeamData]) -> int:
        pass

    @abstractmethod
    async def upsert_players(self, players: list[PlayerData]) -> int:
        pass

    @abstractmethod
    async def upsert_fixtures(self, fixtures: list[FixtureData]) -> int:
        pass

    @abstractmethod
    async def count_entities(self) -> EntityCounts:
        pass

    @abstractmethod
    async def get_team(self, team_id: int) -> Optional[Team]:
        pass

    @abstractmethod
    async def get_team_names(self) -> dict[int, str]:
        pass

    @abstractmethod
    async def get_team_players(self, team_id: int) -> list[Player]:
        pass

    @abstractmethod
    async def get_team_fixtures_before(
        self,
        team_id: int,
        gameweek: int,
        limit: int,
    ) -> list[Fixture]:
        """Finished fixtures of ``team_id`` with event < gameweek, most recent first."""

    @abstractmethod
    async def get_head_to_head(self, team_a: int, team_b: int, limit: int = 10) -> list[Fixture]:
        """Finished meetings between two teams regardless of venue, most recent first."""

    @abstractmethod
    async def get_finished_fixtures(self) -> list[Fixture]:
        """Finished fixtures with both scores, ordered by gameweek ascending."""

    @abstractmethod
    async def get_upcoming_fixtures(self, limit: int) -> list[Fixture]:
        """Unfinished fixtures with both teams set, earliest first."""

    # --- predictions & training ------------------------------------------

    @abstractmethod
    async def save_prediction(self, prediction: Prediction) -> Prediction:
        pass

    @abstractmethod
    async def get_latest_predictions(self, limit: int) -> list[Prediction]:
        pass

    @abstractmethod
    async def save_training_run(self, run: TrainingRun) -> TrainingRun:
        pass

    @abstractmethod
    async def get_training_history(self, limit: int) -> list[TrainingRun]:
        pass

    @abstractmethod
    async def save_sync_run(self, run: SyncRun) -> SyncRun:
        pass

    @abstractmethod
    async def get_last_sync_run(self) -> Optional[SyncRun]:
        pass

    # --- API keys & usage -------------------------------------------------

    @abstractmethod
    async def create_api_key(self, api_key: ApiKey) -> ApiKey:
        pass

    @abstractmethod
    async def get_api_key(self, token: str) -> Optional[ApiKey]:
        """Look up a key by token regardless of its active/expiry state."""

    @abstractmethod
    async def touch_api_key(self, api_key_id: int, used_at: datetime) -> None:
        pass

    @abstractmethod
    async def list_api_keys(self) -> list[ApiKeySummary]:
        pass

    @abstractmethod
    async def log_usage(self, event: ApiUsageEvent) -> None:
        """Append a usage event and fold it into the daily rollup."""

    @abstractmethod
    async def count_usage_since(self, api_key_id: int, since: datetime) -> int:
        pass

    @abstractmethod
    async def get_usage_stats(self, api_key_id: int, days: int) -> list[ApiUsageDailyStat]:
        """Most recent ``days`` rollup rows, newest first."""


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 400
