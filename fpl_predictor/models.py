"""Database models using SQLModel."""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp (stored as-is in SQLite and PostgreSQL)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Team(SQLModel, table=True):
    """Premier League team with FPL strength ratings."""

    __tablename__ = "teams"

    id: int = Field(primary_key=True, description="FPL team ID")
    name: str = Field(max_length=100)
    short_name: str = Field(max_length=10)
    code: Optional[int] = Field(default=None)
    strength: Optional[int] = Field(default=None)
    strength_overall_home: Optional[int] = Field(default=None)
    strength_overall_away: Optional[int] = Field(default=None)
    strength_attack_home: Optional[int] = Field(default=None)
    strength_attack_away: Optional[int] = Field(default=None)
    strength_defence_home: Optional[int] = Field(default=None)
    strength_defence_away: Optional[int] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow)


class Player(SQLModel, table=True):
    """FPL element with cumulative season statistics."""

    __tablename__ = "players"

    id: int = Field(primary_key=True, description="FPL element ID")
    web_name: str = Field(max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    second_name: Optional[str] = Field(default=None, max_length=100)
    team_id: int = Field(foreign_key="teams.id", index=True)
    element_type: Optional[int] = Field(default=None, description="1=GK, 2=DEF, 3=MID, 4=FWD")
    now_cost: int = Field(default=0, description="Price in tenths of a million")
    total_points: int = Field(default=0)
    form: float = Field(default=0.0)
    minutes: int = Field(default=0)
    goals_scored: int = Field(default=0)
    assists: int = Field(default=0)
    influence: float = Field(default=0.0)
    creativity: float = Field(default=0.0)
    threat: float = Field(default=0.0)
    ict_index: float = Field(default=0.0)
    expected_goals: float = Field(default=0.0)
    expected_assists: float = Field(default=0.0)
    expected_goal_involvements: float = Field(default=0.0)
    expected_goals_conceded: float = Field(default=0.0)
    updated_at: datetime = Field(default_factory=utcnow)


class Fixture(SQLModel, table=True):
    """Scheduled or completed match."""

    __tablename__ = "fixtures"

    id: int = Field(primary_key=True, description="FPL fixture ID")
    event: Optional[int] = Field(default=None, index=True, description="Gameweek, NULL if unscheduled")
    team_h: int = Field(foreign_key="teams.id", index=True)
    team_a: int = Field(foreign_key="teams.id", index=True)
    team_h_score: Optional[int] = Field(default=None, description="NULL if not played")
    team_a_score: Optional[int] = Field(default=None, description="NULL if not played")
    finished: bool = Field(default=False)
    kickoff_time: Optional[datetime] = Field(default=None)
    difficulty_h: Optional[int] = Field(default=None)
    difficulty_a: Optional[int] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow)


class Prediction(SQLModel, table=True):
    """Append-only model prediction for a fixture."""

    __tablename__ = "predictions"

    id: Optional[int] = Field(default=None, primary_key=True)
    fixture_id: int = Field(foreign_key="fixtures.id", index=True)
    home_team_id: int = Field(foreign_key="teams.id")
    away_team_id: int = Field(foreign_key="teams.id")
    gameweek: Optional[int] = Field(default=None, index=True)

    home_win_prob: float
    draw_prob: float
    away_win_prob: float
    predicted_outcome: str = Field(max_length=10, description="'Home Win', 'Draw' or 'Away Win'")
    confidence: float = Field(description="Highest of the three probabilities")

    model_version: str = Field(max_length=50)
    features_used: Optional[list] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)


class TrainingRun(SQLModel, table=True):
    """Audit row for one training invocation."""

    __tablename__ = "training_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    model_version: str = Field(max_length=50)
    training_samples: int
    synthetic_samples: int = Field(default=0)
    accuracy: float
    loss: float
    val_accuracy: Optional[float] = Field(default=None)
    val_loss: Optional[float] = Field(default=None)
    training_duration_ms: int = Field(default=0)
    features_used: Optional[list] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)


class SyncRun(SQLModel, table=True):
    """Outcome of one data sync against the FPL API."""

    __tablename__ = "sync_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime
    finished_at: datetime = Field(default_factory=utcnow, index=True)
    success: bool
    teams: int = Field(default=0)
    players: int = Field(default=0)
    fixtures: int = Field(default=0)
    current_gameweek: Optional[int] = Field(default=None)
    errors: Optional[list] = Field(default=None, sa_column=Column(JSON))


class ApiKey(SQLModel, table=True):
    """Client credential. The token itself never changes after creation."""

    __tablename__ = "api_keys"

    id: Optional[int] = Field(default=None, primary_key=True)
    api_key: str = Field(max_length=64, unique=True, index=True)
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    is_active: bool = Field(default=True)
    rate_limit: int = Field(default=1000, description="Requests per rolling hour")
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = Field(default=None)
    expires_at: Optional[datetime] = Field(default=None)

    @property
    def preview(self) -> str:
        """Redacted form safe for logs and listings."""
        return self.api_key[:12] + "..."

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class ApiUsageEvent(SQLModel, table=True):
    """One completed request made with an authenticated key."""

    __tablename__ = "api_usage"

    id: Optional[int] = Field(default=None, primary_key=True)
    api_key_id: int = Field(foreign_key="api_keys.id", index=True)
    endpoint: str = Field(max_length=255)
    method: str = Field(max_length=10)
    status_code: int
    response_time_ms: int = Field(default=0)
    user_agent: str = Field(default="", max_length=500)
    ip_address: str = Field(default="", max_length=64)
    created_at: datetime = Field(default_factory=utcnow, index=True)


class ApiUsageDailyStat(SQLModel, table=True):
    """Per-key daily rollup of usage events, upserted incrementally."""

    __tablename__ = "api_usage_stats"
    __table_args__ = (
        UniqueConstraint("api_key_id", "date", name="uq_usage_key_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    api_key_id: int = Field(foreign_key="api_keys.id", index=True)
    date: date
    total_requests: int = Field(default=0)
    successful_requests: int = Field(default=0)
    failed_requests: int = Field(default=0)
    avg_response_time_ms: float = Field(default=0.0)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.successful_requests / self.total_requests
