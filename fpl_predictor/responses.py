"""JSON envelope helpers: every body carries ``success`` and ``timestamp``."""

from datetime import datetime, timezone
from typing import Optional

from fastapi.responses import JSONResponse

from fpl_predictor.errors import PredictorError, RateLimitExceededError, truncate


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 for stored naive-UTC datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def success_body(**payload) -> dict:
    return {"success": True, **payload, "timestamp": utc_timestamp()}


def error_body(exc: PredictorError, **extra) -> dict:
    body = {
        "success": False,
        "error": exc.kind,
        "message": exc.message,
    }
    if exc.details:
        body["details"] = truncate(exc.details)
    if isinstance(exc, RateLimitExceededError):
        body["rate_limit"] = {
            "limit": exc.limit,
            "remaining": 0,
            "window": exc.window,
            "reset_at": isoformat(exc.reset_at),
        }
    body.update(extra)
    body["timestamp"] = utc_timestamp()
    return body


def error_response(exc: PredictorError, headers: Optional[dict] = None, **extra) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_body(exc, **extra), headers=headers)
