"""Shared sample rubric, submission and model response fixtures."""
from __future__ import annotations

import json

import pytest

from assessor.models import (
    Category,
    Criterion,
    DecisionMapping,
    DecisionThreshold,
    Rubrics,
    RubricConfig,
    ScoreLevel,
    Submission,
)


@pytest.fixture()
def sample_config() -> RubricConfig:
    return RubricConfig(
        categories=[
            Category(name="Team", weight=0.5, criteria=[
                Criterion(name="Exp", weight=1.0, description="Founder experience"),
            ]),
            Category(name="Market", weight=0.5, criteria=[
                Criterion(name="Size", weight=1.0, description="Addressable market size"),
            ]),
        ],
        rubrics=Rubrics(score_levels=[
            ScoreLevel(level=5, label="Excellent"),
            ScoreLevel(level=1, label="Poor"),
        ]),
        decision_mapping=DecisionMapping(
            fund=DecisionThreshold(min_score=4.0, description="Fund"),
            partial=DecisionThreshold(min_score=3.0, max_score=3.9, description="Partial"),
            decline=DecisionThreshold(max_score=2.9, description="Decline"),
        ),
    )


@pytest.fixture()
def sample_submission() -> Submission:
    return Submission(
        startup_name="GridSense",
        industry="Tech",
        stage="mvp",
        problem_statement="Utilities cannot see low-voltage grid congestion.",
        proposed_solution="Sensor network plus forecasting software.",
        criteria_answers={"Team_Exp": "Two exits in grid software.", "Market_Size": "   "},
    )


@pytest.fixture()
def result_payload() -> dict:
    def risk(level: str) -> dict:
        return {"level": level, "description": f"{level.lower()} risk", "concerns": []}

    return {
        "overall_score": 4.2,
        "category_scores": [
            {
                "category_name": "Team",
                "category_weight": 0.5,
                "category_score": 4.5,
                "category_reasoning": "Experienced founders.",
                "criteria_scores": [{
                    "criterion_name": "Exp",
                    "criterion_weight": 1.0,
                    "score": 5,
                    "reasoning": "Two prior exits.",
                    "supporting_evidence": ["Two exits in grid software."],
                }],
            },
            {
                "category_name": "Market",
                "category_weight": 0.5,
                "category_score": 3.9,
                "category_reasoning": "Large but slow market.",
                "criteria_scores": [{
                    "criterion_name": "Size",
                    "criterion_weight": 1.0,
                    "score": 0,
                    "reasoning": "No data.",
                    "insufficient_data": True,
                }],
            },
        ],
        "risk_assessment": {
            "privacy_security": risk("LOW"),
            "compliance": risk("MEDIUM"),
            "market": risk("MEDIUM"),
            "technical": risk("HIGH"),
        },
        "recommendation": "FUND",
        "recommendation_reasoning": "Strong team with a credible product.",
        "key_strengths": ["Team"],
        "key_concerns": ["Market sizing"],
        "data_quality": {
            "completeness": "COMPLETE",
            "gaps": [],
            "impact_on_analysis": "None",
        },
    }


@pytest.fixture()
def result_json(result_payload) -> str:
    return json.dumps(result_payload)
