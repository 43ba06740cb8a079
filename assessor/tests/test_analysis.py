"""Tests for the analysis pipeline: prompt assembly, parsing and fallbacks."""
from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from assessor.analysis import (
    SYSTEM_PROMPT,
    AnalysisPipeline,
    build_prompt,
    detect_industry_by_keywords,
    format_analysis,
    format_criteria_answers,
    parse_response,
    placeholder_result,
)
from assessor.llm import LLMCallError
from assessor.models import Completeness, Recommendation, ReferenceFile


def _collaborator(**kwargs) -> MagicMock:
    client = MagicMock()
    client.model = "test-model"
    client.complete = AsyncMock(**kwargs)
    return client


def _reference(tmp_path, name: str, industry: str, body: str, description: str | None = None) -> ReferenceFile:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return ReferenceFile(
        id=name, industry=industry, filename=name, stored_path=str(path),
        uploaded_at=datetime(2026, 1, 1, tzinfo=UTC), description=description,
    )


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------


class TestBuildPrompt:
    def test_sections_in_order(self, sample_submission, sample_config):
        prompt = build_prompt(sample_submission, sample_config)
        positions = [prompt.index(marker) for marker in (
            "=== SUBMISSION DATA ===",
            "=== FOUNDER RESPONSES TO EVALUATION QUESTIONS ===",
            "=== CRITERIA CONFIGURATION ===",
        )]
        assert positions == sorted(positions)
        assert "Startup Name: GridSense" in prompt
        assert "Stage: mvp" in prompt
        assert "INDUSTRY STATISTICS" not in prompt

    def test_rubric_serialised(self, sample_submission, sample_config):
        prompt = build_prompt(sample_submission, sample_config)
        assert "decision_mapping:" in prompt
        assert "min_score: 4.0" in prompt
        assert "name: Exp" in prompt

    def test_answers_grouped_and_blank_skipped(self, sample_config):
        text = format_criteria_answers({"Team_Exp": "Two exits.", "Market_Size": " "}, sample_config)
        assert text == "--- Team ---\n\nCriterion: Exp\nFounder's Response:\nTwo exits."

    def test_no_answers_section_when_empty(self, sample_submission, sample_config):
        sub = sample_submission.model_copy(update={"criteria_answers": {}})
        assert "FOUNDER RESPONSES" not in build_prompt(sub, sample_config)

    def test_reference_files(self, tmp_path, sample_submission, sample_config):
        csv = _reference(tmp_path, "m.csv", "Tech", "a,b\n" + "\n".join(f"{i},x" for i in range(5)), "Market sizes")
        txt = _reference(tmp_path, "n.txt", "Tech", "Sector notes")
        prompt = build_prompt(sample_submission, sample_config, [csv, txt], csv_row_limit=2)
        assert "=== INDUSTRY STATISTICS AND DATA FILES ===" in prompt
        assert "--- File 1: m.csv ---\nDescription: Market sizes\nCSV File: m.csv\nHeader: a,b" in prompt
        assert "Data rows (showing up to 2):\n0,x\n1,x\n... (3 more rows)" in prompt
        assert "--- File 2: n.txt ---\nTXT File: n.txt\n\nSector notes" in prompt
        assert "Compare the startup's claims against the industry data provided." in prompt

    def test_unreadable_reference_skipped(self, tmp_path, sample_submission, sample_config):
        ref = _reference(tmp_path, "gone.txt", "Tech", "x")
        (tmp_path / "gone.txt").unlink()
        assert "INDUSTRY STATISTICS" not in build_prompt(sample_submission, sample_config, [ref])


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class TestParseResponse:
    def test_plain_json(self, result_json):
        assert parse_response(result_json).overall_score == 4.2

    def test_fenced_json(self, result_json):
        text = f"Here is the analysis:\n```json\n{result_json}\n```\nThanks."
        result = parse_response(text)
        assert result.recommendation is Recommendation.FUND
        assert result.category_scores[1].criteria_scores[0].insufficient_data is True

    def test_uppercase_fence_tag(self, result_json):
        assert parse_response(f"```JSON\n{result_json}\n```").overall_score == 4.2

    def test_lowercase_enums_accepted(self, result_payload):
        result_payload["recommendation"] = "partial"
        result_payload["data_quality"]["completeness"] = "incomplete"
        result = parse_response(json.dumps(result_payload))
        assert result.recommendation is Recommendation.PARTIAL
        assert result.data_quality.completeness is Completeness.INCOMPLETE

    def test_invalid_raises(self):
        with pytest.raises(ValidationError):
            parse_response("not json at all")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_parsed_result_maps_to_fund(self, sample_submission, sample_config, result_json):
        client = _collaborator(return_value=result_json)
        result = await AnalysisPipeline(client).analyze(sample_submission, sample_config)
        assert result.overall_score == 4.2
        assert sample_config.decision_mapping.classify(result.overall_score) is Recommendation.FUND
        client.complete.assert_awaited_once()
        system, user = client.complete.await_args.args
        assert system == SYSTEM_PROMPT
        assert "GridSense" in user

    @pytest.mark.asyncio
    async def test_fenced_result(self, sample_submission, sample_config, result_json):
        client = _collaborator(return_value=f"```json\n{result_json}\n```")
        result = await AnalysisPipeline(client).analyze(sample_submission, sample_config)
        assert result != placeholder_result()
        assert result.overall_score == 4.2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"return_value": "{not valid json"},
        {"return_value": '{"overall_score": 9}'},
        {"side_effect": LLMCallError("boom", retryable=True)},
        {"side_effect": RuntimeError("unexpected")},
    ])
    async def test_failures_yield_placeholder(self, sample_submission, sample_config, kwargs):
        client = _collaborator(**kwargs)
        result = await AnalysisPipeline(client).analyze(sample_submission, sample_config)
        assert result == placeholder_result()
        client.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_client_yields_placeholder(self, sample_submission, sample_config):
        result = await AnalysisPipeline(None).analyze(sample_submission, sample_config)
        assert result == placeholder_result()

    @pytest.mark.asyncio
    async def test_timeout_after_success(self, sample_submission, sample_config, result_json):
        calls = 0

        async def complete(system, user):
            nonlocal calls
            calls += 1
            if calls == 1:
                return result_json
            await asyncio.sleep(5)
            return result_json

        client = _collaborator(side_effect=complete)
        pipeline = AnalysisPipeline(client, timeout_seconds=0.05)
        first = await pipeline.analyze(sample_submission, sample_config)
        second = await pipeline.analyze(sample_submission, sample_config)
        assert first.overall_score == 4.2
        assert second == placeholder_result()
        assert second.data_quality.completeness is Completeness.PARTIAL

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, sample_submission, sample_config):
        started = asyncio.Event()

        async def complete(system, user):
            started.set()
            await asyncio.sleep(5)
            return "{}"

        pipeline = AnalysisPipeline(_collaborator(side_effect=complete), timeout_seconds=10)
        task = asyncio.create_task(pipeline.analyze(sample_submission, sample_config))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_only_matching_industry_references(self, tmp_path, sample_submission, sample_config, result_json):
        tech = _reference(tmp_path, "tech.txt", "tech", "TECH-DATA")
        energy = _reference(tmp_path, "energy.txt", "Energy", "ENERGY-DATA")
        client = _collaborator(return_value=result_json)
        await AnalysisPipeline(client).analyze(sample_submission, sample_config, [tech, energy])
        _, user = client.complete.await_args.args
        assert "TECH-DATA" in user
        assert "ENERGY-DATA" not in user


class TestPlaceholder:
    def test_fixed_values(self):
        result = placeholder_result()
        assert result.overall_score == 3.5
        assert result.recommendation is Recommendation.PARTIAL
        assert result.category_scores == []
        assert result.data_quality.gaps == ["Financial projections", "Detailed market analysis"]
        assert result.qualitative_forecast is not None
        assert placeholder_result() == result


class TestFormatAnalysis:
    def test_sections(self, result_json):
        text = format_analysis(parse_response(result_json))
        for header in (
            "=== AI Analysis Results ===", "=== Category Scores ===", "=== Risk Assessment ===",
            "=== Key Strengths ===", "=== Key Concerns ===", "=== Data Quality ===",
        ):
            assert header in text
        assert "Overall Score: 4.2/5.0" in text
        assert "Size (Weight: 1.0): 0/5 [insufficient data]" in text
        assert "Technical: HIGH - high risk" in text
        assert "Qualitative Forecast" not in text

    def test_placeholder_has_forecast(self):
        text = format_analysis(placeholder_result())
        assert "=== Qualitative Forecast ===" in text
        assert "- Sustainable revenue model" in text


# ---------------------------------------------------------------------------
# Industry detection
# ---------------------------------------------------------------------------


class TestDetectIndustry:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply,expected", [
        ('{"industry": "technology"}', "Tech"),
        ('{"industry": "Energy"}', "Energy"),
        ('{"industry": null}', None),
        ('```json\n{"industry": "tech"}\n```', "Tech"),
    ])
    async def test_collaborator_reply(self, reply, expected):
        pipeline = AnalysisPipeline(_collaborator(return_value=reply))
        assert await pipeline.detect_industry("business plan") == expected

    @pytest.mark.asyncio
    async def test_truncates_input(self):
        client = _collaborator(return_value='{"industry": "Tech"}')
        await AnalysisPipeline(client, detection_chars=10).detect_industry("x" * 50)
        _, user = client.complete.await_args.args
        assert user.endswith("x" * 10)
        assert "x" * 11 not in user

    @pytest.mark.asyncio
    async def test_falls_back_to_keywords(self):
        pipeline = AnalysisPipeline(_collaborator(side_effect=LLMCallError("down")))
        assert await pipeline.detect_industry("We build solar farms") == "Energy"
        assert await AnalysisPipeline(None).detect_industry("A SaaS platform") == "Tech"

    def test_keywords(self):
        assert detect_industry_by_keywords("renewable power") == "Energy"
        assert detect_industry_by_keywords("digital banking") == "Tech"
        assert detect_industry_by_keywords("artisan bakery") is None
