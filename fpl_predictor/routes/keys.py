"""API key administration, protected by the master secret."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from fpl_predictor.config import Settings
from fpl_predictor.deps import get_app_settings, get_storage
from fpl_predictor.errors import InvalidRequestError, PredictorError
from fpl_predictor.models import ApiKey
from fpl_predictor.responses import isoformat, success_body
from fpl_predictor.security import generate_api_key, verify_master_key
from fpl_predictor.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["keys"])

# Regenerations on token collision before giving up
MAX_KEY_ATTEMPTS = 3


class CreateKeyRequest(BaseModel):
    name: Optional[str] = None
    description: str = ""
    rate_limit: Optional[int] = Field(default=None, ge=1, alias="rateLimit")
    master_key: Optional[str] = Field(default=None, alias="masterKey")

    model_config = {"populate_by_name": True}


@router.post("/keys")
async def create_api_key(
    body: CreateKeyRequest,
    x_master_key: Optional[str] = Header(None, alias="x-master-key"),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """Issue a new API key. The full token is only ever returned here."""
    verify_master_key(body.master_key or x_master_key, settings)

    name = (body.name or "").strip()
    if not name:
        raise InvalidRequestError("Name is required and must be a string")

    rate_limit = body.rate_limit or settings.DEFAULT_RATE_LIMIT
    last_error: Optional[Exception] = None
    for _ in range(MAX_KEY_ATTEMPTS):
        try:
            api_key = await storage.create_api_key(
                ApiKey(
                    api_key=generate_api_key(settings.API_KEY_PREFIX),
                    name=name,
                    description=body.description or "",
                    rate_limit=rate_limit,
                )
            )
            break
        except Exception as e:
            last_error = e
            logger.warning(f"API key creation attempt failed: {e}")
    else:
        raise PredictorError("Failed to create API key", details=str(last_error))

    logger.info(f"API key created: {api_key.name} ({api_key.preview})")
    return success_body(
        message="API key created successfully",
        data={
            "id": api_key.id,
            "api_key": api_key.api_key,
            "name": api_key.name,
            "description": api_key.description,
            "rate_limit": api_key.rate_limit,
            "created_at": isoformat(api_key.created_at),
        },
        usage={
            "example_headers": {settings.API_KEY_HEADER: api_key.api_key},
            "example_curl": (
                f'curl -H "{settings.API_KEY_HEADER}: {api_key.api_key}" '
                "https://your-domain.com/api/predict/latest"
            ),
        },
    )


@router.get("/keys")
async def list_api_keys(
    master_key: Optional[str] = Query(None),
    x_master_key: Optional[str] = Header(None, alias="x-master-key"),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """List every key with usage totals. Tokens are redacted to a 12-char preview."""
    verify_master_key(master_key or x_master_key, settings)

    summaries = await storage.list_api_keys()
    keys = [
        {
            "id": s.api_key.id,
            "name": s.api_key.name,
            "description": s.api_key.description,
            "api_key_preview": s.api_key.preview,
            "is_active": s.api_key.is_active,
            "rate_limit": s.api_key.rate_limit,
            "total_requests": s.total_requests,
            "last_used_at": isoformat(s.api_key.last_used_at),
            "last_request": isoformat(s.last_request),
            "created_at": isoformat(s.api_key.created_at),
            "expires_at": isoformat(s.api_key.expires_at),
        }
        for s in summaries
    ]
    return success_body(data=keys, total=len(keys))
