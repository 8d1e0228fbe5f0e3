"""Abstract base class for league data providers."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional


@dataclass
class TeamData:
    """Data transfer object for team information."""

    id: int
    name: str
    short_name: str
    code: Optional[int] = None
    strength: Optional[int] = None
    strength_overall_home: Optional[int] = None
    strength_overall_away: Optional[int] = None
    strength_attack_home: Optional[int] = None
    strength_attack_away: Optional[int] = None
    strength_defence_home: Optional[int] = None
    strength_defence_away: Optional[int] = None

    def as_row(self) -> dict:
        return asdict(self)


@dataclass
class PlayerData:
    """Data transfer object for player (FPL element) information."""

    id: int
    web_name: str
    team_id: int
    first_name: Optional[str] = None
    second_name: Optional[str] = None
    element_type: Optional[int] = None
    now_cost: int = 0
    total_points: int = 0
    form: float = 0.0
    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    influence: float = 0.0
    creativity: float = 0.0
    threat: float = 0.0
    ict_index: float = 0.0
    expected_goals: float = 0.0
    expected_assists: float = 0.0
    expected_goal_involvements: float = 0.0
    expected_goals_conceded: float = 0.0

    def as_row(self) -> dict:
        return asdict(self)


@dataclass
class FixtureData:
    """Data transfer object for fixture information."""

    id: int
    event: Optional[int]
    team_h: int
    team_a: int
    team_h_score: Optional[int]
    team_a_score: Optional[int]
    finished: bool
    kickoff_time: Optional[datetime]
    difficulty_h: Optional[int] = None
    difficulty_a: Optional[int] = None

    def as_row(self) -> dict:
        return asdict(self)


@dataclass
class BootstrapData:
    """Teams and players from one bootstrap snapshot."""

    teams: list[TeamData]
    players: list[PlayerData]


class DataProvider(ABC):
    """Abstract base class for league data providers."""

    @abstractmethod
    async def get_bootstrap(self) -> BootstrapData:
        """Fetch the team/player roster snapshot."""

    @abstractmethod
    async def get_fixtures(self) -> list[FixtureData]:
        """Fetch the full season fixture list."""

    @abstractmethod
    async def get_current_gameweek(self) -> int:
        """Fetch the current period indicator."""

    @abstractmethod
    async def check_health(self) -> bool:
        """Probe the upstream API with a short timeout."""

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
