"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite:///./data/fpl.db"
    STORAGE_BACKEND: str = "sql"  # "sql" | "memory" (ephemeral deployments)

    # FPL public API
    FPL_BASE_URL: str = "https://fantasy.premierleague.com/api"
    FPL_REQUEST_DELAY: float = 1.0  # Seconds after every successful call, and base backoff unit
    FPL_MAX_RETRIES: int = 3
    FPL_TIMEOUT_SECONDS: float = 30.0
    FPL_HEALTH_TIMEOUT_SECONDS: float = 10.0
    FPL_USER_AGENT: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    # ML Config
    MODEL_PATH: str = "./data/models"
    MODEL_VERSION: str = "v2.0.0-mlp"
    FEATURE_FORM_WINDOW: int = 5
    UPCOMING_FIXTURES_LIMIT: int = 20

    # Training
    TRAIN_MIN_SAMPLES: int = 100
    TRAIN_SAMPLE_POLICY: str = "augment"  # "augment" | "strict"
    TRAIN_EPOCHS: int = 50
    TRAIN_BATCH_SIZE: int = 32
    TRAIN_LEARNING_RATE: float = 0.001
    TRAIN_VALIDATION_SPLIT: float = 0.2
    TRAIN_RANDOM_SEED: int = 42

    # API Security
    API_KEY_PREFIX: str = "fpl_"
    API_KEY_HEADER: str = "x-api-key"
    DEFAULT_RATE_LIMIT: int = 1000  # Requests per rolling window
    RATE_LIMIT_WINDOW_MINUTES: int = 60
    MASTER_API_KEY: str = ""  # Empty = key administration disabled (503)

    # Public endpoints (slowapi, per client IP)
    PUBLIC_RATE_LIMIT: str = "60/minute"

    # Telemetry
    METRICS_BEARER_TOKEN: str = ""  # Empty = /metrics is public
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.05


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
