"""
Tests for the sync, training and generation jobs over in-memory storage.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from joblib import dump, load

from fpl_predictor.features.engineering import FeatureEngineer
from fpl_predictor.jobs.generation import run_generation
from fpl_predictor.jobs.results import (
    GenerationSkipped,
    GenerationSuccess,
    SyncPartialFailure,
    SyncSuccess,
    TrainingFailure,
    TrainingSuccess,
    render_prediction,
)
from fpl_predictor.jobs.sync import run_sync
from fpl_predictor.jobs.training import run_training
from fpl_predictor.ml.engine import MLPEngine
from fpl_predictor.models import Prediction, TrainingRun


class TestRunSync:
    """FPL API to storage."""

    @pytest.mark.asyncio
    async def test_full_sync(self, provider, storage):
        result = await run_sync(provider, storage)

        assert isinstance(result, SyncSuccess)
        assert result.counts.teams == 4
        assert result.counts.players == 12
        assert result.counts.fixtures == 36
        assert result.counts.current_gameweek == 6

        body = result.to_dict()
        assert body["success"] is True
        assert body["errors"] == []

        run = await storage.get_last_sync_run()
        assert run.success is True
        assert run.fixtures == 36

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, provider, storage):
        """Re-running with unchanged upstream data leaves counts unchanged."""
        await run_sync(provider, storage)
        first = await storage.count_entities()

        await run_sync(provider, storage)
        second = await storage.count_entities()

        assert (first.teams, first.players, first.fixtures) == (4, 12, 36)
        assert (second.teams, second.players, second.fixtures) == (4, 12, 36)

    @pytest.mark.asyncio
    async def test_failed_stage_does_not_stop_others(self, provider, storage):
        provider.fail_stages.add("fixtures")

        result = await run_sync(provider, storage)

        assert isinstance(result, SyncPartialFailure)
        assert result.success is False
        assert result.errors == ["Fixtures fetch failed: HTTP 503"]
        assert result.counts.teams == 4
        assert result.counts.fixtures == 0
        assert result.counts.current_gameweek == 6
        assert provider.calls["current_gameweek"] == 1

        run = await storage.get_last_sync_run()
        assert run.success is False
        assert run.errors == ["Fixtures fetch failed: HTTP 503"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_prefixed_with_stage(self, provider, storage):
        provider.get_bootstrap = AsyncMock(side_effect=RuntimeError("socket closed"))

        result = await run_sync(provider, storage)

        assert result.errors == ["Bootstrap fetch failed: socket closed"]
        assert result.counts.fixtures == 36

    @pytest.mark.asyncio
    async def test_sync_run_write_failure_is_tolerated(self, provider, storage):
        storage.save_sync_run = AsyncMock(side_effect=RuntimeError("disk full"))

        result = await run_sync(provider, storage)

        assert isinstance(result, SyncSuccess)


class TestRunTraining:
    """Finished fixtures to a trained model and a TrainingRun row."""

    @pytest.mark.asyncio
    async def test_augmented_training(self, engine, seeded_storage, settings):
        """30 real matches are topped up with synthetic rows to the minimum."""
        settings.TRAIN_MIN_SAMPLES = 100
        engineer = FeatureEngineer(seeded_storage)

        result = await run_training(engine, seeded_storage, engineer, settings)

        assert isinstance(result, TrainingSuccess)
        assert result.real_samples == 30
        assert result.synthetic_samples == 70

        history = await seeded_storage.get_training_history(5)
        assert len(history) == 1
        run = history[0]
        assert run.id == result.training_run_id
        assert run.training_samples == 100
        assert run.synthetic_samples == 70
        assert run.features_used == ["strength", "form", "h2h", "squad_quality", "context"]
        assert engine.artifact_exists()

        body = result.to_dict()
        assert body["counts"]["training_samples"] == 100
        assert body["model_version"] == settings.MODEL_VERSION

    @pytest.mark.asyncio
    async def test_strict_policy_failure(self, engine, seeded_storage, settings):
        settings.TRAIN_MIN_SAMPLES = 100
        settings.TRAIN_SAMPLE_POLICY = "strict"
        engineer = FeatureEngineer(seeded_storage)

        result = await run_training(engine, seeded_storage, engineer, settings)

        assert isinstance(result, TrainingFailure)
        assert result.kind == "insufficient_data"
        assert (result.available, result.required) == (30, 100)
        assert result.to_dict()["counts"] == {"available": 30, "required": 100}
        assert not engine.artifact_exists()
        assert seeded_storage.training_runs == []

    @pytest.mark.asyncio
    async def test_training_run_write_is_mandatory(self, engine, seeded_storage, settings):
        """A lost TrainingRun row fails the job instead of hiding the model."""
        seeded_storage.save_training_run = AsyncMock(side_effect=RuntimeError("disk full"))
        engineer = FeatureEngineer(seeded_storage)

        result = await run_training(engine, seeded_storage, engineer, settings)

        assert isinstance(result, TrainingFailure)
        assert result.kind == "persistence_error"

    @pytest.mark.asyncio
    async def test_model_failure(self, engine, seeded_storage, settings):
        engine.train = MagicMock(side_effect=RuntimeError("nan loss"))
        engineer = FeatureEngineer(seeded_storage)

        result = await run_training(engine, seeded_storage, engineer, settings)

        assert isinstance(result, TrainingFailure)
        assert result.kind == "model_error"
        assert result.message == "nan loss"


class TestRunGeneration:
    """Upcoming fixtures to stored predictions, with pipeline guidance."""

    @pytest.mark.asyncio
    async def test_without_data_points_to_sync(self, engine, storage):
        result = await run_generation(engine, storage, FeatureEngineer(storage), limit=20)

        assert isinstance(result, GenerationSkipped)
        body = result.to_dict()
        assert body["success"] is True
        assert body["predictions"] == []
        assert body["next_steps"][0].startswith("sync")

    @pytest.mark.asyncio
    async def test_without_model_points_to_train(self, engine, seeded_storage):
        result = await run_generation(engine, seeded_storage, FeatureEngineer(seeded_storage), limit=20)

        assert isinstance(result, GenerationSkipped)
        assert result.to_dict()["next_steps"][0].startswith("train")

    @pytest.mark.asyncio
    async def test_generates_for_upcoming_fixtures(self, engine, seeded_storage, settings):
        engineer = FeatureEngineer(seeded_storage)
        await run_training(engine, seeded_storage, engineer, settings)

        result = await run_generation(engine, seeded_storage, engineer, limit=20)

        assert isinstance(result, GenerationSuccess)
        assert result.attempted == 6
        assert result.saved == 6
        assert result.errors == []
        assert len(seeded_storage.predictions) == 6

        for prediction in seeded_storage.predictions:
            probs = [prediction.home_win_prob, prediction.draw_prob, prediction.away_win_prob]
            assert sum(probs) == pytest.approx(1.0, abs=1e-6)
            assert prediction.confidence == max(probs)
            assert prediction.gameweek == 6

        rendered = result.to_dict()["predictions"][0]
        assert rendered["home_team"].startswith("Team ")
        assert set(rendered["probabilities"]) == {"home_win", "draw", "away_win"}

    @pytest.mark.asyncio
    async def test_limit_applies(self, engine, seeded_storage, settings):
        engineer = FeatureEngineer(seeded_storage)
        await run_training(engine, seeded_storage, engineer, settings)

        result = await run_generation(engine, seeded_storage, engineer, limit=2)

        assert result.attempted == 2

    @pytest.mark.asyncio
    async def test_unloadable_artifact_points_to_train(self, engine, seeded_storage, settings):
        """A corrupt artifact never produces fallback rows dressed up as predictions."""
        await seeded_storage.save_training_run(
            TrainingRun(
                model_version=settings.MODEL_VERSION,
                training_samples=100,
                accuracy=0.5,
                loss=1.0,
                features_used=["strength"],
            )
        )
        engine.model_path.mkdir(parents=True, exist_ok=True)
        engine.artifact_path.write_bytes(b"not a joblib file")

        result = await run_generation(engine, seeded_storage, FeatureEngineer(seeded_storage), limit=20)

        assert isinstance(result, GenerationSkipped)
        assert result.to_dict()["next_steps"][0].startswith("train")
        assert seeded_storage.predictions == []

    @pytest.mark.asyncio
    async def test_other_feature_layout_points_to_train(self, engine, seeded_storage, settings):
        engineer = FeatureEngineer(seeded_storage)
        await run_training(engine, seeded_storage, engineer, settings)
        artifact = load(engine.artifact_path)
        artifact["feature_columns"] = ["something_else"]
        dump(artifact, engine.artifact_path)
        fresh = MLPEngine(settings)

        result = await run_generation(fresh, seeded_storage, engineer, limit=20)

        assert isinstance(result, GenerationSkipped)
        assert not fresh.is_loaded
        assert seeded_storage.predictions == []

    @pytest.mark.asyncio
    async def test_failed_save_is_skipped(self, engine, seeded_storage, settings):
        engineer = FeatureEngineer(seeded_storage)
        await run_training(engine, seeded_storage, engineer, settings)
        original_save = seeded_storage.save_prediction
        calls = {"n": 0}

        async def flaky_save(prediction):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("constraint violation")
            return await original_save(prediction)

        seeded_storage.save_prediction = flaky_save

        result = await run_generation(engine, seeded_storage, engineer, limit=20)

        assert result.attempted == 6
        assert result.saved == 5
        assert len(result.errors) == 1
        assert result.errors[0].endswith("constraint violation")


class TestRenderPrediction:
    """Client view of a stored prediction."""

    def test_percentages_and_names(self):
        prediction = Prediction(
            id=1,
            fixture_id=10,
            home_team_id=1,
            away_team_id=99,
            gameweek=6,
            home_win_prob=0.514,
            draw_prob=0.25,
            away_win_prob=0.236,
            predicted_outcome="Home Win",
            confidence=0.514,
            model_version="v2.0.0-mlp",
        )

        rendered = render_prediction(prediction, {1: "Arsenal"})

        assert rendered["home_team"] == "Arsenal"
        assert rendered["away_team"] == "Team 99"
        assert rendered["confidence"] == 51
        assert rendered["probabilities"] == {"home_win": 51, "draw": 25, "away_win": 24}
