"""FastAPI application for the FPL match predictor."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded

from fpl_predictor.config import Settings, get_settings
from fpl_predictor.errors import PredictorError, PublicRateLimitError, RequestValidationFailed
from fpl_predictor.etl.base import DataProvider
from fpl_predictor.etl.fpl_api import FPLProvider
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.responses import error_response
from fpl_predictor.routes.core import router as core_router
from fpl_predictor.routes.data import router as data_router
from fpl_predictor.routes.keys import router as keys_router
from fpl_predictor.routes.predictions import router as predictions_router
from fpl_predictor.routes.training import router as training_router
from fpl_predictor.routes.usage import router as usage_router
from fpl_predictor.security import drain_usage_tasks, limiter, use_public_rate_limit_from
from fpl_predictor.storage import build_storage
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import init_sentry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    provider: Optional[DataProvider] = None,
    engine: Optional[MLPEngine] = None,
) -> FastAPI:
    """
    Build the application.

    Services not passed in are created from settings at startup; tests pass
    an in-memory storage and a stub provider.
    """
    settings = settings or get_settings()
    init_sentry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting FPL predictor...")
        app.state.settings = settings
        app.state.storage = storage or await build_storage(settings)
        app.state.provider = provider or FPLProvider(settings)
        app.state.ml_engine = engine or MLPEngine(settings)

        if await asyncio.to_thread(app.state.ml_engine.load):
            logger.info(f"ML model loaded: {app.state.ml_engine.model_version}")
        else:
            logger.warning("No trained model found. Train via POST /api/train/production")

        yield

        logger.info("Shutting down...")
        try:
            await asyncio.wait_for(drain_usage_tasks(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Pending usage writes did not finish before shutdown")
        await app.state.provider.close()
        await app.state.storage.close()

    app = FastAPI(
        title="FPL Predictor",
        description="Fantasy Premier League match outcome predictions",
        version=settings.MODEL_VERSION,
        lifespan=lifespan,
    )

    # Add rate limiting for public endpoints
    app.state.limiter = limiter
    use_public_rate_limit_from(settings)

    @app.exception_handler(RateLimitExceeded)
    async def public_rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Public rate limit hit on {request.url.path}: {exc.detail}")
        return error_response(
            PublicRateLimitError(f"Rate limit exceeded: {exc.detail}"),
            help={"message": "Retry once the rate limit window resets."},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        return error_response(RequestValidationFailed("Request parameters are invalid", details="; ".join(problems)))

    @app.exception_handler(PredictorError)
    async def predictor_error_handler(request: Request, exc: PredictorError):
        if exc.status_code >= 500:
            logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
        return error_response(exc)

    # Include routers
    app.include_router(core_router)
    app.include_router(data_router)
    app.include_router(training_router)
    app.include_router(predictions_router)
    app.include_router(usage_router)
    app.include_router(keys_router)

    return app


app = create_app()
