"""In-memory storage backend for tests and local experiments."""

import asyncio
from datetime import date, datetime
from itertools import count
from typing import Optional

from fpl_predictor.db_utils import fold_usage_into_stat
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
    utcnow,
)
from fpl_predictor.storage.base import ApiKeySummary, EntityCounts, Storage, is_success_status


def _recency_key(fixture: Fixture) -> tuple:
    return (fixture.event or 0, fixture.kickoff_time or datetime.min)


def _has_result(fixture: Fixture) -> bool:
    return fixture.finished and fixture.team_h_score is not None and fixture.team_a_score is not None


class InMemoryStorage(Storage):
    """Dict-backed implementation of the storage contract."""

    def __init__(self):
        self.teams: dict[int, Team] = {}
        self.players: dict[int, Player] = {}
        self.fixtures: dict[int, Fixture] = {}
        self.predictions: list[Prediction] = []
        self.training_runs: list[TrainingRun] = []
        self.sync_runs: list[SyncRun] = []
        self.api_keys: dict[str, ApiKey] = {}
        self.usage_events: list[ApiUsageEvent] = []
        self.usage_stats: dict[tuple[int, date], ApiUsageDailyStat] = {}
        self._ids = count(1)
        self._lock = asyncio.Lock()
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise ConnectionError("storage unavailable")

    async def ping(self) -> bool:
        self._check()
        return True

    async def close(self) -> None:
        pass

    # --- league data ------------------------------------------------------

    async def upsert_teams(self, teams: list[TeamData]) -> int:
        self._check()
        for team in teams:
            self.teams[team.id] = Team(**team.as_row())
        return len(teams)

    async def upsert_players(self, players: list[PlayerData]) -> int:
        self._check()
        for player in players:
            self.players[player.id] = Player(**player.as_row())
        return len(players)

    async def upsert_fixtures(self, fixtures: list[FixtureData]) -> int:
        self._check()
        for fixture in fixtures:
            self.fixtures[fixture.id] = Fixture(**fixture.as_row())
        return len(fixtures)

    async def count_entities(self) -> EntityCounts:
        self._check()
        return EntityCounts(
            teams=len(self.teams),
            players=len(self.players),
            fixtures=len(self.fixtures),
            finished_fixtures=sum(1 for f in self.fixtures.values() if f.finished),
            predictions=len(self.predictions),
            training_runs=len(self.training_runs),
        )

    async def get_team(self, team_id: int) -> Optional[Team]:
        self._check()
        return self.teams.get(team_id)

    async def get_team_names(self) -> dict[int, str]:
        self._check()
        return {team_id: team.name for team_id, team in self.teams.items()}

    async def get_team_players(self, team_id: int) -> list[Player]:
        self._check()
        return [p for p in self.players.values() if p.team_id == team_id]

    async def get_team_fixtures_before(
        self,
        team_id: int,
        gameweek: int,
        limit: int,
    ) -> list[Fixture]:
        self._check()
        matches = [
            f for f in self.fixtures.values()
            if team_id in (f.team_h, f.team_a)
            and _has_result(f)
            and f.event is not None
            and f.event < gameweek
        ]
        matches.sort(key=_recency_key, reverse=True)
        return matches[:limit]

    async def get_head_to_head(self, team_a: int, team_b: int, limit: int = 10) -> list[Fixture]:
        self._check()
        pair = {team_a, team_b}
        matches = [
            f for f in self.fixtures.values()
            if {f.team_h, f.team_a} == pair and _has_result(f)
        ]
        matches.sort(key=_recency_key, reverse=True)
        return matches[:limit]

    async def get_finished_fixtures(self) -> list[Fixture]:
        self._check()
        return sorted((f for f in self.fixtures.values() if _has_result(f)), key=_recency_key)

    async def get_upcoming_fixtures(self, limit: int) -> list[Fixture]:
        self._check()
        upcoming = [f for f in self.fixtures.values() if not f.finished]
        upcoming.sort(key=lambda f: (f.event is None, f.event or 0, f.kickoff_time or datetime.max))
        return upcoming[:limit]

    # --- predictions & training ------------------------------------------

    async def save_prediction(self, prediction: Prediction) -> Prediction:
        self._check()
        prediction.id = next(self._ids)
        self.predictions.append(prediction)
        return prediction

    async def get_latest_predictions(self, limit: int) -> list[Prediction]:
        self._check()
        return sorted(self.predictions, key=lambda p: (p.created_at, p.id), reverse=True)[:limit]

    async def save_training_run(self, run: TrainingRun) -> TrainingRun:
        self._check()
        run.id = next(self._ids)
        self.training_runs.append(run)
        return run

    async def get_training_history(self, limit: int) -> list[TrainingRun]:
        self._check()
        return sorted(self.training_runs, key=lambda r: (r.created_at, r.id), reverse=True)[:limit]

    async def save_sync_run(self, run: SyncRun) -> SyncRun:
        self._check()
        run.id = next(self._ids)
        self.sync_runs.append(run)
        return run

    async def get_last_sync_run(self) -> Optional[SyncRun]:
        self._check()
        return self.sync_runs[-1] if self.sync_runs else None

    # --- API keys & usage -------------------------------------------------

    async def create_api_key(self, api_key: ApiKey) -> ApiKey:
        self._check()
        if api_key.api_key in self.api_keys:
            raise ValueError("duplicate api key")
        api_key.id = next(self._ids)
        self.api_keys[api_key.api_key] = api_key
        return api_key

    async def get_api_key(self, token: str) -> Optional[ApiKey]:
        self._check()
        return self.api_keys.get(token)

    async def touch_api_key(self, api_key_id: int, used_at: datetime) -> None:
        self._check()
        for key in self.api_keys.values():
            if key.id == api_key_id:
                key.last_used_at = used_at

    async def list_api_keys(self) -> list[ApiKeySummary]:
        self._check()
        summaries = []
        for key in sorted(self.api_keys.values(), key=lambda k: k.created_at, reverse=True):
            events = [e for e in self.usage_events if e.api_key_id == key.id]
            summaries.append(
                ApiKeySummary(
                    api_key=key,
                    total_requests=len(events),
                    last_request=max((e.created_at for e in events), default=None),
                )
            )
        return summaries

    async def log_usage(self, event: ApiUsageEvent) -> None:
        self._check()
        async with self._lock:
            event.id = next(self._ids)
            self.usage_events.append(event)
            day = event.created_at.date()
            stat = self.usage_stats.get((event.api_key_id, day))
            if stat is None:
                stat = ApiUsageDailyStat(api_key_id=event.api_key_id, date=day, updated_at=utcnow())
                self.usage_stats[(event.api_key_id, day)] = stat
            fold_usage_into_stat(stat, is_success_status(event.status_code), event.response_time_ms)

    async def count_usage_since(self, api_key_id: int, since: datetime) -> int:
        self._check()
        return sum(
            1 for e in self.usage_events
            if e.api_key_id == api_key_id and e.created_at > since
        )

    async def get_usage_stats(self, api_key_id: int, days: int) -> list[ApiUsageDailyStat]:
        self._check()
        rows = [s for (key_id, _), s in self.usage_stats.items() if key_id == api_key_id]
        rows.sort(key=lambda s: s.date, reverse=True)
        return rows[:days]
