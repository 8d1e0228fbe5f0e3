"""FastAPI dependencies resolving the shared services created at startup."""

from fastapi import Request

from fpl_predictor.config import Settings
from fpl_predictor.etl.base import DataProvider
from fpl_predictor.features.engineering import FeatureEngineer
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.storage.base import Storage


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_provider(request: Request) -> DataProvider:
    return request.app.state.provider


def get_engine(request: Request) -> MLPEngine:
    return request.app.state.ml_engine


def get_feature_engineer(request: Request) -> FeatureEngineer:
    settings = request.app.state.settings
    return FeatureEngineer(request.app.state.storage, form_window=settings.FEATURE_FORM_WINDOW)
