"""Usage statistics for the calling API key."""

from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request

from fpl_predictor.config import Settings
from fpl_predictor.deps import get_app_settings, get_storage
from fpl_predictor.models import utcnow
from fpl_predictor.responses import isoformat, success_body
from fpl_predictor.security import GatedRoute, get_request_api_key, window_label
from fpl_predictor.storage.base import Storage

router = APIRouter(prefix="/api", tags=["usage"], route_class=GatedRoute)

MIN_DAYS = 1
MAX_DAYS = 90


def clamp_days(days: int) -> int:
    return min(max(days, MIN_DAYS), MAX_DAYS)


def _rate(successful: int, total: int, digits: int = 2) -> str:
    if not total:
        return "0%"
    return f"{successful / total * 100:.{digits}f}%"


@router.get("/usage")
async def usage_stats(
    request: Request,
    days: int = Query(30),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """Daily rollups and totals over the last ``days`` days (clamped to 1-90)."""
    api_key = get_request_api_key(request)
    period = clamp_days(days)
    stats = await storage.get_usage_stats(api_key.id, period)

    total = sum(s.total_requests for s in stats)
    successful = sum(s.successful_requests for s in stats)
    failed = sum(s.failed_requests for s in stats)
    # Request-weighted mean across days
    avg_latency = (
        sum(s.avg_response_time_ms * s.total_requests for s in stats) / total if total else 0.0
    )

    window = timedelta(minutes=settings.RATE_LIMIT_WINDOW_MINUTES)
    limit = api_key.rate_limit or settings.DEFAULT_RATE_LIMIT
    try:
        used = await storage.count_usage_since(api_key.id, utcnow() - window)
        remaining = max(0, limit - used)
    except Exception:
        remaining = None

    return success_body(
        data={
            "api_key": {
                "id": api_key.id,
                "name": api_key.name,
                "preview": api_key.preview,
                "created_at": isoformat(api_key.created_at),
                "last_used_at": isoformat(api_key.last_used_at),
            },
            "summary": {
                "total_requests": total,
                "successful_requests": successful,
                "failed_requests": failed,
                "success_rate": _rate(successful, total),
                "avg_response_time_ms": round(avg_latency),
                "period_days": period,
            },
            "rate_limit": {
                "limit": limit,
                "remaining": remaining,
                "window": window_label(settings.RATE_LIMIT_WINDOW_MINUTES),
            },
            "daily_stats": [
                {
                    "date": s.date.isoformat(),
                    "total_requests": s.total_requests,
                    "successful_requests": s.successful_requests,
                    "failed_requests": s.failed_requests,
                    "success_rate": _rate(s.successful_requests, s.total_requests, digits=1),
                    "avg_response_time_ms": round(s.avg_response_time_ms),
                }
                for s in stats
            ],
        }
    )
