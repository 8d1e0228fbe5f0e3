"""Storage backends behind a single async interface."""

import logging

from fpl_predictor.config import Settings
from fpl_predictor.database import create_engine
from fpl_predictor.storage.base import ApiKeySummary, EntityCounts, Storage, is_success_status
from fpl_predictor.storage.memory import InMemoryStorage
from fpl_predictor.storage.sql import SQLStorage

logger = logging.getLogger(__name__)


async def build_storage(settings: Settings) -> Storage:
    """Create and initialize the backend selected by STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "memory":
        logger.warning("Using in-memory storage: data is lost on restart")
        return InMemoryStorage()
    if backend != "sql":
        raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")

    storage = SQLStorage(create_engine(settings.DATABASE_URL))
    await storage.initialize()
    return storage


__all__ = [
    "Storage",
    "SQLStorage",
    "InMemoryStorage",
    "EntityCounts",
    "ApiKeySummary",
    "build_storage",
    "is_success_status",
]
