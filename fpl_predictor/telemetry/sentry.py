"""
Sentry integration for error tracking.

Security:
- API key and master secret headers are scrubbed before sending
- Query strings carrying keys are redacted
- Request bodies are NOT captured (key creation carries the master secret)
- PII is disabled
"""

import logging
import re
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from fpl_predictor.config import Settings

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = (
    "x-api-key",
    "x-master-key",
    "authorization",
    "cookie",
    "set-cookie",
    "x-forwarded-for",
    "x-real-ip",
)

_QUERY_SECRET_RE = re.compile(r"(?i)(api_key|master_key|key|token|secret)=([^&]*)")

_sentry_initialized = False


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """Remove credentials from a Sentry event before it leaves the process."""
    try:
        request = event.get("request") or {}

        headers = request.get("headers") or {}
        for name in list(headers.keys()):
            if name.lower() in SENSITIVE_HEADERS:
                headers[name] = "[REDACTED]"
        request["headers"] = headers

        query_string = request.get("query_string")
        if isinstance(query_string, str) and query_string:
            request["query_string"] = _QUERY_SECRET_RE.sub(r"\1=[REDACTED]", query_string)

        if "data" in request:
            request["data"] = "[SCRUBBED]"

        event["request"] = request

    except Exception as e:
        # Never fail scrubbing
        logger.warning(f"Sentry scrubbing error (continuing): {e}")

    return event


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    if not settings.SENTRY_DSN:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.MODEL_VERSION,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.ERROR,
                event_level=logging.ERROR,
            ),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        profiles_sample_rate=0.0,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )

    _sentry_initialized = True
    logger.info(
        f"Sentry initialized: env={settings.SENTRY_ENVIRONMENT}, "
        f"traces_sample_rate={settings.SENTRY_TRACES_SAMPLE_RATE}"
    )
    return True


def capture_exception(exception: Exception, pipeline: Optional[str] = None, **extra_context) -> None:
    """Capture an exception with optional pipeline tagging. No-op when Sentry is off."""
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        if pipeline:
            scope.set_tag("pipeline", pipeline)
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
