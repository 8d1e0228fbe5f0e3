"""Error taxonomy shared by the request gate, pipelines and routes.

Every error carries a machine-readable ``kind`` and the HTTP status it maps to.
Client-facing messages are short; internal detail stays in the logs.
"""

from datetime import datetime
from typing import Optional

MAX_DETAIL_LENGTH = 200


def truncate(text: str, limit: int = MAX_DETAIL_LENGTH) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def short_message(exc: BaseException) -> str:
    """Derive a short, client-safe message from an exception."""
    return truncate(str(exc) or exc.__class__.__name__)


class PredictorError(Exception):
    """Base class for all service errors."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthError(PredictorError):
    """Missing, malformed, unknown or inactive API key."""

    status_code = 401

    def __init__(self, kind: str, message: str, status_code: int = 401):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class ServiceUnavailableError(PredictorError):
    """Storage or auth backend unreachable; clients should retry later."""

    kind = "service_unavailable"
    status_code = 503


class RateLimitExceededError(PredictorError):
    """The key used up its allowance for the rolling window."""

    kind = "rate_limit_exceeded"
    status_code = 429

    def __init__(self, limit: int, reset_at: datetime, window: str = "1 hour"):
        super().__init__(
            f"Rate limit exceeded. Maximum {limit} requests per hour allowed."
        )
        self.limit = limit
        self.reset_at = reset_at
        self.window = window


class UpstreamFetchError(PredictorError):
    """External league API failed after retries were exhausted."""

    kind = "upstream_fetch_error"
    status_code = 502

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} fetch failed: {message}")
        self.stage = stage


class InsufficientDataError(PredictorError):
    """Training or prediction prerequisites are not met."""

    kind = "insufficient_data"
    status_code = 422

    def __init__(self, message: str, available: int = 0, required: int = 0):
        super().__init__(message)
        self.available = available
        self.required = required


class ModelError(PredictorError):
    """Training or inference failed inside the model."""

    kind = "model_error"
    status_code = 500


class PersistenceError(PredictorError):
    """A storage write the caller depends on did not succeed."""

    kind = "persistence_error"
    status_code = 500


class InvalidRequestError(PredictorError):
    """Malformed client input the schema layer cannot catch."""

    kind = "invalid_request"
    status_code = 400


class RequestValidationFailed(InvalidRequestError):
    """Query, path or body parameters failed schema validation."""

    status_code = 422


class PublicRateLimitError(PredictorError):
    """Per-IP limit on a public endpoint was hit."""

    kind = "rate_limit_exceeded"
    status_code = 429
