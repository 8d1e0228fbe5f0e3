"""Shared fixtures: in-memory storage, a canned FPL provider and a test client."""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Optional

import pytest
from starlette.testclient import TestClient

from fpl_predictor.config import Settings
from fpl_predictor.errors import UpstreamFetchError
from fpl_predictor.etl.base import BootstrapData, DataProvider, FixtureData, PlayerData, TeamData
from fpl_predictor.main import create_app
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.models import ApiKey, Fixture, Player, Team
from fpl_predictor.security import limiter
from fpl_predictor.storage.memory import InMemoryStorage

MASTER_KEY = "master-secret-for-tests"


def build_league(n_teams: int = 4, finished_gameweeks: int = 5, upcoming_gameweeks: int = 1):
    """
    Small deterministic league: every pair meets once per gameweek.

    Home side wins when (home + gw) is even, draws when divisible by 3,
    otherwise the away side wins.
    """
    teams = [
        TeamData(
            id=i,
            name=f"Team {i}",
            short_name=f"T{i}",
            strength=3,
            strength_overall_home=1100 + 20 * i,
            strength_overall_away=1080 + 20 * i,
            strength_attack_home=1150 + 10 * i,
            strength_attack_away=1120 + 10 * i,
            strength_defence_home=1130 + 15 * i,
            strength_defence_away=1110 + 15 * i,
        )
        for i in range(1, n_teams + 1)
    ]

    players = []
    for team in teams:
        for j in range(3):
            players.append(
                PlayerData(
                    id=team.id * 100 + j,
                    web_name=f"Player {team.id}-{j}",
                    team_id=team.id,
                    now_cost=50 + j,
                    total_points=10 * j,
                    form=float(j + 1),
                    minutes=90 * (j + 1),
                    ict_index=10.0 * (j + 1),
                )
            )

    fixtures = []
    fixture_id = 1
    kickoff = datetime(2026, 8, 15, 15, 0)
    pairs = [(h.id, a.id) for h in teams for a in teams if h.id < a.id]
    for gw in range(1, finished_gameweeks + upcoming_gameweeks + 1):
        finished = gw <= finished_gameweeks
        for home, away in pairs:
            if finished:
                if (home + gw) % 3 == 0:
                    score = (1, 1)
                elif (home + gw) % 2 == 0:
                    score = (2, 0)
                else:
                    score = (0, 1)
            else:
                score = (None, None)
            fixtures.append(
                FixtureData(
                    id=fixture_id,
                    event=gw,
                    team_h=home,
                    team_a=away,
                    team_h_score=score[0],
                    team_a_score=score[1],
                    finished=finished,
                    kickoff_time=kickoff + timedelta(days=7 * (gw - 1)),
                    difficulty_h=3,
                    difficulty_a=3,
                )
            )
            fixture_id += 1

    return teams, players, fixtures


class StubProvider(DataProvider):
    """Canned provider; individual stages can be made to fail."""

    def __init__(self, teams=None, players=None, fixtures=None, current_gameweek: int = 6):
        default_teams, default_players, default_fixtures = build_league()
        self.teams = teams if teams is not None else default_teams
        self.players = players if players is not None else default_players
        self.fixtures = fixtures if fixtures is not None else default_fixtures
        self.current_gameweek = current_gameweek
        self.fail_stages: set[str] = set()
        self.healthy = True
        self.calls: dict[str, int] = {"bootstrap": 0, "fixtures": 0, "current_gameweek": 0}

    async def get_bootstrap(self) -> BootstrapData:
        self.calls["bootstrap"] += 1
        if "bootstrap" in self.fail_stages:
            raise UpstreamFetchError("Bootstrap", "HTTP 503")
        return BootstrapData(teams=list(self.teams), players=list(self.players))

    async def get_fixtures(self) -> list[FixtureData]:
        self.calls["fixtures"] += 1
        if "fixtures" in self.fail_stages:
            raise UpstreamFetchError("Fixtures", "HTTP 503")
        return list(self.fixtures)

    async def get_current_gameweek(self) -> int:
        self.calls["current_gameweek"] += 1
        if "current_gameweek" in self.fail_stages:
            raise UpstreamFetchError("Current GW", "HTTP 503")
        return self.current_gameweek

    async def check_health(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        pass


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        STORAGE_BACKEND="memory",
        MODEL_PATH=str(tmp_path / "models"),
        MASTER_API_KEY=MASTER_KEY,
        TRAIN_MIN_SAMPLES=20,
        TRAIN_EPOCHS=5,
        FPL_REQUEST_DELAY=0.0,
        METRICS_BEARER_TOKEN="",
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def engine(settings) -> MLPEngine:
    return MLPEngine(settings)


@pytest.fixture
def league():
    return build_league()


@pytest.fixture
def seeded_storage(storage, league) -> InMemoryStorage:
    """Storage pre-loaded with the default league, without touching an event loop."""
    teams, players, fixtures = league
    storage.teams.update({t.id: Team(**t.as_row()) for t in teams})
    storage.players.update({p.id: Player(**p.as_row()) for p in players})
    storage.fixtures.update({f.id: Fixture(**f.as_row()) for f in fixtures})
    return storage


@pytest.fixture
def client(settings, storage, provider, engine):
    limiter.reset()
    app = create_app(settings=settings, storage=storage, provider=provider, engine=engine)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_key(storage):
    """Factory inserting an API key straight into storage (sync tests only)."""

    def _make(
        token: str = "fpl_abc123",
        rate_limit: int = 1000,
        is_active: bool = True,
        expires_at: Optional[datetime] = None,
        name: str = "test-client",
    ) -> ApiKey:
        return asyncio.run(
            storage.create_api_key(
                ApiKey(
                    api_key=token,
                    name=name,
                    rate_limit=rate_limit,
                    is_active=is_active,
                    expires_at=expires_at,
                )
            )
        )

    return _make


@pytest.fixture
def wait_for_usage(storage):
    """Block until ``n`` usage events were persisted by the background tasks."""

    def _wait(n: int, timeout: float = 2.0) -> list:
        deadline = time.monotonic() + timeout
        while len(storage.usage_events) < n and time.monotonic() < deadline:
            time.sleep(0.01)
        return storage.usage_events

    return _wait
