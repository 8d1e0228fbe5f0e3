"""Data sync job: FPL API -> storage."""

import logging
import time

from fpl_predictor.errors import PredictorError, short_message
from fpl_predictor.etl.base import DataProvider
from fpl_predictor.jobs.results import SyncCounts, SyncPartialFailure, SyncResult, SyncSuccess
from fpl_predictor.models import SyncRun, utcnow
from fpl_predictor.storage.base import Storage
from fpl_predictor.telemetry import record_pipeline_run

logger = logging.getLogger(__name__)


async def run_sync(provider: DataProvider, storage: Storage) -> SyncResult:
    """
    Fetch bootstrap, fixtures and current gameweek as independent stages.

    A failed stage is recorded as an error and does not stop the others.
    Rows are upserted by natural id, so re-running with unchanged upstream
    data leaves row counts unchanged.
    """
    started_at = utcnow()
    start = time.time()
    counts = SyncCounts()
    errors: list[str] = []

    logger.info("=== Starting FPL data sync ===")

    try:
        bootstrap = await provider.get_bootstrap()
        counts.teams = await storage.upsert_teams(bootstrap.teams)
        counts.players = await storage.upsert_players(bootstrap.players)
    except PredictorError as e:
        errors.append(e.message)
        logger.error(e.message)
    except Exception as e:
        message = f"Bootstrap fetch failed: {short_message(e)}"
        errors.append(message)
        logger.error(message)

    try:
        fixtures = await provider.get_fixtures()
        counts.fixtures = await storage.upsert_fixtures(fixtures)
    except PredictorError as e:
        errors.append(e.message)
        logger.error(e.message)
    except Exception as e:
        message = f"Fixtures fetch failed: {short_message(e)}"
        errors.append(message)
        logger.error(message)

    try:
        counts.current_gameweek = await provider.get_current_gameweek()
    except PredictorError as e:
        errors.append(e.message)
        logger.error(e.message)
    except Exception as e:
        message = f"Current GW fetch failed: {short_message(e)}"
        errors.append(message)
        logger.error(message)

    logger.info(
        f"=== FPL data sync complete: teams={counts.teams}, players={counts.players}, "
        f"fixtures={counts.fixtures}, gameweek={counts.current_gameweek}, errors={len(errors)} ==="
    )

    try:
        await storage.save_sync_run(
            SyncRun(
                started_at=started_at,
                finished_at=utcnow(),
                success=not errors,
                teams=counts.teams,
                players=counts.players,
                fixtures=counts.fixtures,
                current_gameweek=counts.current_gameweek,
                errors=errors or None,
            )
        )
    except Exception as e:
        logger.warning(f"Failed to record sync run (continuing): {e}")

    duration_ms = (time.time() - start) * 1000
    if errors:
        record_pipeline_run("sync", "partial", duration_ms)
        return SyncPartialFailure(counts=counts, errors=errors)
    record_pipeline_run("sync", "ok", duration_ms)
    return SyncSuccess(counts=counts)
