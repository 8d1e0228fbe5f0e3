"""Relational storage backend on an async SQLAlchemy engine."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from fpl_predictor.database import close_db, create_session_factory, init_db
from fpl_predictor.db_utils import bulk_upsert, increment_daily_usage
from fpl_predictor.errors import PersistenceError
from fpl_predictor.etl.base import FixtureData, PlayerData, TeamData
from fpl_predictor.models import (
    ApiKey,
    ApiUsageDailyStat,
    ApiUsageEvent,
    Fixture,
    Player,
    Prediction,
    SyncRun,
    Team,
    TrainingRun,
    utcnow,
)
from fpl_predictor.storage.base import ApiKeySummary, EntityCounts, Storage, is_success_status

logger = logging.getLogger(__name__)


class SQLStorage(Storage):
    """Storage backed by SQLite (default) or PostgreSQL."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = create_session_factory(engine)

    async def initialize(self) -> None:
        await init_db(self.engine)

    async def ping(self) -> bool:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        await close_db(self.engine)

    # --- league data ------------------------------------------------------

    async def _upsert(self, model, rows: list[dict]) -> int:
        now = utcnow()
        for row in rows:
            row["updated_at"] = now
        async with self.session_factory() as session:
            written = await bulk_upsert(session, model, rows, conflict_columns=["id"])
            await session.commit()
        logger.info(f"Upserted {written} rows into {model.__tablename__}")
        return written

    async def upsert_teams(self, teams: list[TeamData]) -> int:
        return await self._upsert(Team, [t.as_row() for t in teams])

    async def upsert_players(self, players: list[PlayerData]) -> int:
        return await self._upsert(Player, [p.as_row() for p in players])

    async def upsert_fixtures(self, fixtures: list[FixtureData]) -> int:
        return await self._upsert(Fixture, [f.as_row() for f in fixtures])

    async def count_entities(self) -> EntityCounts:
        async with self.session_factory() as session:

            async def count(stmt) -> int:
                return (await session.execute(stmt)).scalar() or 0

            return EntityCounts(
                teams=await count(select(func.count()).select_from(Team)),
                players=await count(select(func.count()).select_from(Player)),
                fixtures=await count(select(func.count()).select_from(Fixture)),
                finished_fixtures=await count(
                    select(func.count()).select_from(Fixture).where(Fixture.finished == True)  # noqa: E712
                ),
                predictions=await count(select(func.count()).select_from(Prediction)),
                training_runs=await count(select(func.count()).select_from(TrainingRun)),
            )

    async def get_team(self, team_id: int) -> Optional[Team]:
        async with self.session_factory() as session:
            return await session.get(Team, team_id)

    async def get_team_names(self) -> dict[int, str]:
        async with self.session_factory() as session:
            result = await session.execute(select(Team.id, Team.name))
            return {row.id: row.name for row in result}

    async def get_team_players(self, team_id: int) -> list[Player]:
        async with self.session_factory() as session:
            result = await session.execute(select(Player).where(Player.team_id == team_id))
            return list(result.scalars().all())

    async def get_team_fixtures_before(
        self,
        team_id: int,
        gameweek: int,
        limit: int,
    ) -> list[Fixture]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Fixture)
                .where(
                    or_(Fixture.team_h == team_id, Fixture.team_a == team_id),
                    Fixture.finished == True,  # noqa: E712
                    Fixture.event < gameweek,
                    Fixture.team_h_score.isnot(None),
                    Fixture.team_a_score.isnot(None),
                )
                .order_by(Fixture.event.desc(), Fixture.kickoff_time.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_head_to_head(self, team_a: int, team_b: int, limit: int = 10) -> list[Fixture]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Fixture)
                .where(
                    or_(
                        and_(Fixture.team_h == team_a, Fixture.team_a == team_b),
                        and_(Fixture.team_h == team_b, Fixture.team_a == team_a),
                    ),
                    Fixture.finished == True,  # noqa: E712
                    Fixture.team_h_score.isnot(None),
                    Fixture.team_a_score.isnot(None),
                )
                .order_by(Fixture.event.desc(), Fixture.kickoff_time.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_finished_fixtures(self) -> list[Fixture]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Fixture)
                .where(
                    Fixture.finished == True,  # noqa: E712
                    Fixture.team_h_score.isnot(None),
                    Fixture.team_a_score.isnot(None),
                )
                .order_by(Fixture.event, Fixture.kickoff_time)
            )
            return list(result.scalars().all())

    async def get_upcoming_fixtures(self, limit: int) -> list[Fixture]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Fixture)
                .where(Fixture.finished == False)  # noqa: E712
                .order_by(Fixture.event.is_(None), Fixture.event, Fixture.kickoff_time)
                .limit(limit)
            )
            return list(result.scalars().all())

    # --- predictions & training ------------------------------------------

    async def _add(self, instance):
        async with self.session_factory() as session:
            session.add(instance)
            await session.commit()
            await session.refresh(instance)
        return instance

    async def save_prediction(self, prediction: Prediction) -> Prediction:
        return await self._add(prediction)

    async def get_latest_predictions(self, limit: int) -> list[Prediction]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Prediction).order_by(Prediction.created_at.desc(), Prediction.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def save_training_run(self, run: TrainingRun) -> TrainingRun:
        try:
            return await self._add(run)
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to save training run", details=str(e)) from e

    async def get_training_history(self, limit: int) -> list[TrainingRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TrainingRun).order_by(TrainingRun.created_at.desc(), TrainingRun.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def save_sync_run(self, run: SyncRun) -> SyncRun:
        return await self._add(run)

    async def get_last_sync_run(self) -> Optional[SyncRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun).order_by(SyncRun.finished_at.desc(), SyncRun.id.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    # --- API keys & usage -------------------------------------------------

    async def create_api_key(self, api_key: ApiKey) -> ApiKey:
        return await self._add(api_key)

    async def get_api_key(self, token: str) -> Optional[ApiKey]:
        async with self.session_factory() as session:
            result = await session.execute(select(ApiKey).where(ApiKey.api_key == token))
            return result.scalar_one_or_none()

    async def touch_api_key(self, api_key_id: int, used_at: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ApiKey).where(ApiKey.id == api_key_id).values(last_used_at=used_at)
            )
            await session.commit()

    async def list_api_keys(self) -> list[ApiKeySummary]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    ApiKey,
                    func.count(ApiUsageEvent.id).label("total_requests"),
                    func.max(ApiUsageEvent.created_at).label("last_request"),
                )
                .outerjoin(ApiUsageEvent, ApiUsageEvent.api_key_id == ApiKey.id)
                .group_by(ApiKey.id)
                .order_by(ApiKey.created_at.desc())
            )
            return [
                ApiKeySummary(api_key=key, total_requests=total or 0, last_request=last)
                for key, total, last in result.all()
            ]

    async def log_usage(self, event: ApiUsageEvent) -> None:
        async with self.session_factory() as session:
            session.add(event)
            await increment_daily_usage(
                session,
                api_key_id=event.api_key_id,
                day=event.created_at.date(),
                success=is_success_status(event.status_code),
                response_time_ms=event.response_time_ms,
            )
            await session.commit()

    async def count_usage_since(self, api_key_id: int, since: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ApiUsageEvent)
                .where(ApiUsageEvent.api_key_id == api_key_id, ApiUsageEvent.created_at > since)
            )
            return result.scalar() or 0

    async def get_usage_stats(self, api_key_id: int, days: int) -> list[ApiUsageDailyStat]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiUsageDailyStat)
                .where(ApiUsageDailyStat.api_key_id == api_key_id)
                .order_by(ApiUsageDailyStat.date.desc())
                .limit(days)
            )
            return list(result.scalars().all())
