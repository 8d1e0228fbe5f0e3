"""Fantasy Premier League public API provider."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from fpl_predictor.config import Settings, get_settings
from fpl_predictor.errors import UpstreamFetchError, short_message
from fpl_predictor.etl.base import BootstrapData, DataProvider, FixtureData, PlayerData, TeamData
from fpl_predictor.telemetry import record_provider_request

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def _to_float(value: Any) -> float:
    """FPL serializes most decimal stats as strings ("4.5")."""
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_kickoff(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 kickoff time into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable kickoff_time: {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_team(raw: dict) -> TeamData:
    return TeamData(
        id=int(raw["id"]),
        name=raw.get("name", ""),
        short_name=raw.get("short_name", ""),
        code=raw.get("code"),
        strength=raw.get("strength"),
        strength_overall_home=raw.get("strength_overall_home"),
        strength_overall_away=raw.get("strength_overall_away"),
        strength_attack_home=raw.get("strength_attack_home"),
        strength_attack_away=raw.get("strength_attack_away"),
        strength_defence_home=raw.get("strength_defence_home"),
        strength_defence_away=raw.get("strength_defence_away"),
    )


def parse_player(raw: dict) -> PlayerData:
    return PlayerData(
        id=int(raw["id"]),
        web_name=raw.get("web_name", ""),
        team_id=int(raw["team"]),
        first_name=raw.get("first_name"),
        second_name=raw.get("second_name"),
        element_type=raw.get("element_type"),
        now_cost=_to_int(raw.get("now_cost")),
        total_points=_to_int(raw.get("total_points")),
        form=_to_float(raw.get("form")),
        minutes=_to_int(raw.get("minutes")),
        goals_scored=_to_int(raw.get("goals_scored")),
        assists=_to_int(raw.get("assists")),
        influence=_to_float(raw.get("influence")),
        creativity=_to_float(raw.get("creativity")),
        threat=_to_float(raw.get("threat")),
        ict_index=_to_float(raw.get("ict_index")),
        expected_goals=_to_float(raw.get("expected_goals")),
        expected_assists=_to_float(raw.get("expected_assists")),
        expected_goal_involvements=_to_float(raw.get("expected_goal_involvements")),
        expected_goals_conceded=_to_float(raw.get("expected_goals_conceded")),
    )


def parse_fixture(raw: dict) -> FixtureData:
    """Parse one fixture, keeping the finished => both scores invariant."""
    home_score = raw.get("team_h_score")
    away_score = raw.get("team_a_score")
    finished = bool(raw.get("finished"))
    if finished and (home_score is None or away_score is None):
        logger.warning(f"Fixture {raw.get('id')} marked finished without a score, treating as unfinished")
        finished = False

    return FixtureData(
        id=int(raw["id"]),
        event=raw.get("event"),
        team_h=int(raw["team_h"]),
        team_a=int(raw["team_a"]),
        team_h_score=home_score,
        team_a_score=away_score,
        finished=finished,
        kickoff_time=_parse_kickoff(raw.get("kickoff_time")),
        difficulty_h=raw.get("team_h_difficulty"),
        difficulty_a=raw.get("team_a_difficulty"),
    )


def current_gameweek_from_events(events: list[dict]) -> int:
    """The is_current event, else the first is_next event, else 1."""
    for event in events:
        if event.get("is_current"):
            return int(event["id"])
    for event in events:
        if event.get("is_next"):
            return int(event["id"])
    return 1


class FPLProvider(DataProvider):
    """
    Client for https://fantasy.premierleague.com/api.

    Every call is retried up to ``FPL_MAX_RETRIES`` times after the first
    attempt; retry n waits ``n * FPL_REQUEST_DELAY``. Each successful call is
    followed by a ``FPL_REQUEST_DELAY`` pause so a sync never bursts the API.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.FPL_BASE_URL.rstrip("/")
        self.request_delay = self.settings.FPL_REQUEST_DELAY
        self.max_retries = self.settings.FPL_MAX_RETRIES
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": self.settings.FPL_USER_AGENT},
            timeout=self.settings.FPL_TIMEOUT_SECONDS,
        )
        self._sleep = sleep

    async def _request(self, path: str, stage: str, resource: str) -> Any:
        url = f"{self.base_url}/{path}"
        last_error = "unknown error"

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait_time = self.request_delay * attempt
                logger.warning(
                    f"Request to {path} failed, retrying in {wait_time}s "
                    f"({attempt}/{self.max_retries})"
                )
                await self._sleep(wait_time)

            start_time = time.time()
            try:
                logger.info(f"Fetching: {url}")
                response = await self.client.get(url)
                latency_ms = (time.time() - start_time) * 1000
                record_provider_request(resource, response.status_code, latency_ms)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}"
                continue
            except httpx.HTTPError as e:
                latency_ms = (time.time() - start_time) * 1000
                record_provider_request(resource, 0, latency_ms)
                last_error = short_message(e)
                continue
            except ValueError as e:
                last_error = f"invalid JSON: {short_message(e)}"
                continue

            await self._sleep(self.request_delay)
            return data

        logger.error(f"{stage} fetch failed after {self.max_retries + 1} attempts: {last_error}")
        raise UpstreamFetchError(stage, last_error)

    async def get_bootstrap(self) -> BootstrapData:
        data = await self._request("bootstrap-static/", stage="Bootstrap", resource="bootstrap")
        try:
            teams = [parse_team(t) for t in data.get("teams", [])]
            players = [parse_player(p) for p in data.get("elements", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamFetchError("Bootstrap", f"malformed payload: {short_message(e)}") from e
        logger.info(f"Fetched {len(teams)} teams and {len(players)} players")
        return BootstrapData(teams=teams, players=players)

    async def get_fixtures(self) -> list[FixtureData]:
        data = await self._request("fixtures/", stage="Fixtures", resource="fixtures")
        try:
            fixtures = [parse_fixture(f) for f in data]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamFetchError("Fixtures", f"malformed payload: {short_message(e)}") from e
        logger.info(f"Fetched {len(fixtures)} fixtures")
        return fixtures

    async def get_current_gameweek(self) -> int:
        data = await self._request("bootstrap-static/", stage="Current GW", resource="current_gameweek")
        try:
            return current_gameweek_from_events(data.get("events", []))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamFetchError("Current GW", f"malformed payload: {short_message(e)}") from e

    async def check_health(self) -> bool:
        """Single probe without retries or pacing."""
        start_time = time.time()
        try:
            response = await self.client.get(
                f"{self.base_url}/bootstrap-static/",
                timeout=self.settings.FPL_HEALTH_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.warning(f"FPL API health probe failed: {e}")
            return False
        record_provider_request("health", response.status_code, (time.time() - start_time) * 1000)
        return response.is_success

    async def close(self) -> None:
        await self.client.aclose()
