"""Tests for submission checks and the evaluate-and-store flow."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from assessor import services
from assessor.analysis import AnalysisPipeline, placeholder_result
from assessor.config import AnswerPolicy
from assessor.criteria import ConfigStore
from assessor.models import AttachedFile, ErrorKind
from assessor.questions import generate_questions
from assessor.store import ResultStore


@pytest.fixture()
def store(tmp_path) -> ResultStore:
    return ResultStore(tmp_path / "data")


@pytest.fixture()
def config_store(tmp_path, store, sample_config) -> ConfigStore:
    cs = ConfigStore(tmp_path / "rubrics", overrides=store)
    cs.save("Tech", sample_config)
    return cs


def _pipeline(**kwargs) -> AnalysisPipeline:
    client = MagicMock()
    client.model = "test-model"
    client.complete = AsyncMock(**kwargs)
    return AnalysisPipeline(client, timeout_seconds=5)


class TestCheckSubmission:
    def test_warn_policy(self, sample_submission, sample_config):
        check = services.check_submission(sample_submission, generate_questions(sample_config))
        assert check.ok
        assert check.warnings == ["1 evaluation question(s) unanswered: Size"]

    def test_optional_policy(self, sample_submission, sample_config):
        check = services.check_submission(
            sample_submission, generate_questions(sample_config), AnswerPolicy.OPTIONAL,
        )
        assert check.ok and check.warnings == []

    def test_required_policy(self, sample_submission, sample_config):
        check = services.check_submission(
            sample_submission, generate_questions(sample_config), AnswerPolicy.REQUIRED,
        )
        assert not check.ok
        assert "unanswered: Size" in check.errors[0]

    def test_missing_fields(self, sample_submission):
        sub = sample_submission.model_copy(update={"startup_name": " ", "proposed_solution": ""})
        check = services.check_submission(sub, [])
        assert check.errors == ["Startup name is required", "Proposed solution is required"]

    def test_file_usage_without_file(self, sample_submission):
        sub = sample_submission.model_copy(update={"files": [
            AttachedFile(id=1, usage="Pitch deck"),
            AttachedFile(id=2, usage="Financials", path="/tmp/f.csv"),
            AttachedFile(id=3),
        ]})
        check = services.check_submission(sub, [])
        assert check.errors == ["File 1: usage description provided but no file selected"]


class TestEvaluateSubmission:
    @pytest.mark.asyncio
    async def test_stores_result(self, sample_submission, config_store, store, result_json):
        outcome = await services.evaluate_submission(
            sample_submission, config_store, store, _pipeline(return_value=result_json),
        )
        assert outcome.ok
        assert outcome.value.analysis_result.overall_score == 4.2
        assert "Warnings: 1 evaluation question(s) unanswered" in outcome.message
        assert store.list_all() == [outcome.value]

    @pytest.mark.asyncio
    async def test_collaborator_failure_stores_placeholder(self, sample_submission, config_store, store):
        outcome = await services.evaluate_submission(
            sample_submission, config_store, store, _pipeline(side_effect=RuntimeError("down")),
        )
        assert outcome.value.analysis_result == placeholder_result()

    @pytest.mark.asyncio
    async def test_required_policy_blocks(self, sample_submission, config_store, store):
        pipeline = _pipeline(return_value="{}")
        outcome = await services.evaluate_submission(
            sample_submission, config_store, store, pipeline, AnswerPolicy.REQUIRED,
        )
        assert outcome.error is ErrorKind.INCOMPLETE_SUBMISSION
        pipeline.client.complete.assert_not_awaited()
        assert store.list_all() == []

    @pytest.mark.asyncio
    async def test_cancelled_evaluation_stores_nothing(self, sample_submission, config_store, store):
        started = asyncio.Event()

        async def complete(system, user):
            started.set()
            await asyncio.sleep(5)
            return "{}"

        task = asyncio.create_task(services.evaluate_submission(
            sample_submission, config_store, store, _pipeline(side_effect=complete),
        ))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.list_all() == []
