"""Security: API-key gate (auth, rate limit, usage logging), master secret, IP limiter."""

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Coroutine, Optional

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from fpl_predictor.config import Settings, get_settings
from fpl_predictor.errors import (
    AuthError,
    PredictorError,
    RateLimitExceededError,
    ServiceUnavailableError,
    short_message,
)
from fpl_predictor.models import ApiKey, ApiUsageEvent, utcnow
from fpl_predictor.responses import error_response
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import (
    record_gate_decision,
    record_gate_latency,
    record_usage_log_failure,
)

logger = logging.getLogger(__name__)

# Rate limiter for public endpoints, keyed by client IP
limiter = Limiter(key_func=get_remote_address)

# Settings of the app that owns the limiter; the limit string is re-read per request
_public_limit_settings: Optional[Settings] = None

API_KEY_SUFFIX_LENGTH = 32
_KEY_ALPHABET = string.ascii_letters + string.digits

# Pending fire-and-forget usage writes; holding a reference keeps them alive
_usage_tasks: set[asyncio.Task] = set()


def use_public_rate_limit_from(settings: Settings) -> None:
    global _public_limit_settings
    _public_limit_settings = settings


def public_rate_limit() -> str:
    return (_public_limit_settings or get_settings()).PUBLIC_RATE_LIMIT


# =============================================================================
# Key issuance and master secret
# =============================================================================


def generate_api_key(prefix: Optional[str] = None) -> str:
    """Random token: prefix followed by 32 alphanumerics."""
    prefix = prefix if prefix is not None else get_settings().API_KEY_PREFIX
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(API_KEY_SUFFIX_LENGTH))
    return f"{prefix}{suffix}"


def verify_master_key(provided: Optional[str], settings: Optional[Settings] = None) -> None:
    """
    Check the administrative secret for key issuance and listing.

    Raises ServiceUnavailableError when MASTER_API_KEY is not configured, so
    key administration is fail-closed, and AuthError (403) on mismatch.
    """
    settings = settings or get_settings()
    expected = settings.MASTER_API_KEY
    if not expected:
        logger.error("MASTER_API_KEY not configured - key administration disabled")
        raise ServiceUnavailableError("Key administration is not configured on this server")

    if not provided or not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Invalid master key attempt")
        raise AuthError("invalid_master_key", "Invalid master key", status_code=403)


# =============================================================================
# Authentication
# =============================================================================


def auth_help(settings: Settings) -> dict:
    """Remediation hints attached to every authentication failure."""
    header = settings.API_KEY_HEADER
    prefix = settings.API_KEY_PREFIX
    return {
        "required_header": header,
        "alternate_header": "Authorization: Bearer <api_key>",
        "api_key_format": f"{prefix}{'x' * 18}",
        "get_api_key": "Ask an administrator to create one via POST /api/keys",
        "example_curl": f'curl -H "{header}: your_key_here" https://your-domain.com/api/predict/latest',
        "common_issues": {
            "key_format": f"Ensure the API key starts with '{prefix}'",
            "missing_header": f"Include the '{header}' header in all requests",
            "key_disabled": "Disabled or expired keys are rejected; contact an administrator",
        },
    }


def extract_api_key(request: Request, settings: Settings) -> Optional[str]:
    """Read the key from the API key header, falling back to a bearer token."""
    token = request.headers.get(settings.API_KEY_HEADER)
    if not token:
        authorization = request.headers.get("authorization", "")
        if authorization.lower().startswith("bearer "):
            token = authorization[7:]
    token = (token or "").strip()
    return token or None


async def authenticate(request: Request, storage: Storage, settings: Settings) -> ApiKey:
    """
    Resolve the request's API key.

    The prefix check happens before any storage access. Storage failures
    surface as 503 so clients can tell "wrong key" from "service down".
    """
    token = extract_api_key(request, settings)
    if not token:
        raise AuthError(
            "missing_api_key",
            f"API key is required. Include {settings.API_KEY_HEADER} header with your API key.",
        )

    if not token.startswith(settings.API_KEY_PREFIX):
        raise AuthError(
            "invalid_api_key_format",
            f"Invalid API key format. API keys must start with {settings.API_KEY_PREFIX}",
        )

    preview = token[:12] + "..."
    try:
        api_key = await storage.get_api_key(token)
    except Exception as e:
        logger.error(f"API key lookup failed for {preview}: {e}")
        raise ServiceUnavailableError(
            "Authentication service temporarily unavailable. Please try again later."
        ) from e

    if api_key is None:
        logger.info(f"API key not found: {preview}")
        raise AuthError(
            "invalid_api_key",
            "Invalid or expired API key. Please check your API key or contact admin.",
        )

    if not api_key.is_active:
        logger.info(f"API key is disabled: {api_key.name} ({preview})")
        raise AuthError(
            "api_key_disabled",
            "API key is disabled. Please contact admin.",
            status_code=403,
        )

    if api_key.is_expired():
        logger.info(f"API key expired: {api_key.name} ({preview})")
        raise AuthError(
            "invalid_api_key",
            "Invalid or expired API key. Please check your API key or contact admin.",
        )

    try:
        await storage.touch_api_key(api_key.id, utcnow())
    except Exception as e:
        logger.warning(f"Failed to refresh last_used_at for {preview}: {e}")

    return api_key


# =============================================================================
# Rate limiting
# =============================================================================


@dataclass
class RateLimitStatus:
    limit: int
    remaining: Optional[int]  # None when the count could not be read
    reset_at: datetime
    window: str


def window_label(minutes: int) -> str:
    return "1 hour" if minutes == 60 else f"{minutes} minutes"


async def check_rate_limit(api_key: ApiKey, storage: Storage, settings: Settings) -> RateLimitStatus:
    """
    Rolling-window limit: count this key's usage events in the trailing window.

    A failed count lets the request through with ``remaining=None``.
    Raises RateLimitExceededError once the count reaches the key's ceiling.
    """
    window = timedelta(minutes=settings.RATE_LIMIT_WINDOW_MINUTES)
    label = window_label(settings.RATE_LIMIT_WINDOW_MINUTES)
    now = utcnow()
    limit = api_key.rate_limit or settings.DEFAULT_RATE_LIMIT
    reset_at = now + window

    try:
        used = await storage.count_usage_since(api_key.id, now - window)
    except Exception as e:
        logger.warning(f"Rate limit check failed for {api_key.preview}, allowing request: {e}")
        return RateLimitStatus(limit=limit, remaining=None, reset_at=reset_at, window=label)

    if used >= limit:
        raise RateLimitExceededError(limit=limit, reset_at=reset_at, window=label)

    # Remaining after this request is counted
    return RateLimitStatus(limit=limit, remaining=max(0, limit - used - 1), reset_at=reset_at, window=label)


# =============================================================================
# Usage logging
# =============================================================================


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _persist_usage(storage: Storage, event: ApiUsageEvent) -> None:
    try:
        await storage.log_usage(event)
    except Exception as e:
        logger.warning(f"Failed to log API usage for key {event.api_key_id}: {e}")
        record_usage_log_failure()


def schedule_usage_log(storage: Storage, event: ApiUsageEvent) -> asyncio.Task:
    """Persist a usage event in the background; never awaited by the response path."""
    task = asyncio.create_task(_persist_usage(storage, event))
    _usage_tasks.add(task)
    task.add_done_callback(_usage_tasks.discard)
    return task


async def drain_usage_tasks() -> None:
    """Wait for pending usage writes (shutdown and tests)."""
    if _usage_tasks:
        await asyncio.gather(*list(_usage_tasks), return_exceptions=True)


# =============================================================================
# Gate
# =============================================================================


def get_request_api_key(request: Request) -> ApiKey:
    """Dependency for handlers behind GatedRoute."""
    return request.state.api_key


async def gate_request(
    request: Request,
    handler: Callable[[Request], Coroutine[None, None, Response]],
    storage: Storage,
    settings: Settings,
) -> Response:
    """authenticate -> rate limit -> dispatch, logging usage for any resolved key."""
    start = time.perf_counter()
    api_key: Optional[ApiKey] = None
    status_code = 500

    try:
        api_key = await authenticate(request, storage, settings)
    except AuthError as e:
        record_gate_decision(e.kind)
        logger.info(f"Authentication failed ({e.kind}) for {request.method} {request.url.path}")
        return error_response(e, help=auth_help(settings), status_code=e.status_code)
    except ServiceUnavailableError as e:
        record_gate_decision(e.kind)
        return error_response(e)

    try:
        rate = await check_rate_limit(api_key, storage, settings)
        record_gate_decision("allowed")

        request.state.api_key = api_key
        response = await handler(request)
        status_code = response.status_code

        response.headers["X-RateLimit-Limit"] = str(rate.limit)
        if rate.remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(rate.remaining)
        return response

    except RateLimitExceededError as e:
        status_code = e.status_code
        record_gate_decision("rate_limited")
        logger.warning(f"Rate limit exceeded for {api_key.name} ({api_key.preview})")
        return error_response(
            e,
            headers={"X-RateLimit-Limit": str(e.limit), "X-RateLimit-Remaining": "0"},
        )
    except StarletteHTTPException as e:
        status_code = e.status_code
        raise
    except RequestValidationError:
        status_code = 422
        raise
    except PredictorError as e:
        status_code = e.status_code
        logger.error(f"Handler error on {request.url.path}: {e.message}")
        return error_response(e)
    except Exception as e:
        status_code = 500
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(
            PredictorError(
                "An unexpected error occurred processing your request",
                details=short_message(e),
            ),
            help={"message": "This appears to be a server-side issue. Please try again or contact support."},
        )

    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        record_gate_latency(latency_ms)
        if api_key is not None:
            schedule_usage_log(
                storage,
                ApiUsageEvent(
                    api_key_id=api_key.id,
                    endpoint=request.url.path,
                    method=request.method,
                    status_code=status_code,
                    response_time_ms=latency_ms,
                    user_agent=(request.headers.get("user-agent") or "")[:500],
                    ip_address=client_ip(request)[:64],
                ),
            )


class GatedRoute(APIRoute):
    """
    Route class that puts every endpoint of a router behind the API-key gate.

    Usage:
        router = APIRouter(prefix="/api/data", route_class=GatedRoute)
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[None, None, Response]]:
        original_handler = super().get_route_handler()

        async def gated_handler(request: Request) -> Response:
            return await gate_request(
                request,
                original_handler,
                storage=request.app.state.storage,
                settings=request.app.state.settings,
            )

        return gated_handler
