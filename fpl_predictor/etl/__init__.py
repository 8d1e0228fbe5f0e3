"""ETL module for fetching league data from the FPL API."""

from fpl_predictor.etl.base import BootstrapData, DataProvider, FixtureData, PlayerData, TeamData
from fpl_predictor.etl.fpl_api import FPLProvider

__all__ = [
    "DataProvider",
    "FPLProvider",
    "BootstrapData",
    "TeamData",
    "PlayerData",
    "FixtureData",
]
