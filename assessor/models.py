"""Domain models: rubric configuration, submissions, analysis results and reviews.

Everything here is a frozen pydantic model. Field names are the wire names
used by the rubric YAML documents, the model's JSON response and the durable
JSON documents, so a single ``model_validate`` / ``model_dump(mode="json")``
pair covers every boundary.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Generic, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from assessor.utils import new_id, utc_now

T = TypeVar("T")


def _enum_key(value: Any) -> Any:
    """Normalise ``"early-revenue"`` / ``"medium"`` style values to member values."""
    if isinstance(value, str):
        return re.sub(r"[\s-]+", "_", value.strip()).upper()
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Stage(StrEnum):
    IDEA = "IDEA"
    MVP = "MVP"
    EARLY_REVENUE = "EARLY_REVENUE"


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Recommendation(StrEnum):
    FUND = "FUND"
    PARTIAL = "PARTIAL"
    DECLINE = "DECLINE"


class Completeness(StrEnum):
    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    INCOMPLETE = "INCOMPLETE"


class ReviewStatus(StrEnum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    PARTIAL = "PARTIAL"
    DECLINED = "DECLINED"


# Position in the review workflow; decisions share the final rank.
STATUS_RANK: dict[ReviewStatus, int] = {
    ReviewStatus.PENDING: 0,
    ReviewStatus.IN_REVIEW: 1,
    ReviewStatus.APPROVED: 2,
    ReviewStatus.PARTIAL: 2,
    ReviewStatus.DECLINED: 2,
}

StageField = Annotated[Stage, BeforeValidator(_enum_key)]
RiskLevelField = Annotated[RiskLevel, BeforeValidator(_enum_key)]
RecommendationField = Annotated[Recommendation, BeforeValidator(_enum_key)]
CompletenessField = Annotated[Completeness, BeforeValidator(_enum_key)]
ReviewStatusField = Annotated[ReviewStatus, BeforeValidator(_enum_key)]


# ---------------------------------------------------------------------------
# Rubric configuration
# ---------------------------------------------------------------------------


class Criterion(_Frozen):
    name: str
    weight: float = Field(ge=0.0, le=1.0)
    description: str = ""


class Category(_Frozen):
    name: str
    weight: float = Field(ge=0.0, le=1.0)
    criteria: list[Criterion] = []


class ScoreLevel(_Frozen):
    level: int = Field(ge=1, le=5)
    label: str
    description: str = ""


class Rubrics(_Frozen):
    score_levels: list[ScoreLevel] = []


class DecisionThreshold(_Frozen):
    min_score: float | None = None
    max_score: float | None = None
    description: str = ""

    def contains(self, score: float) -> bool:
        if self.min_score is not None and score < self.min_score:
            return False
        if self.max_score is not None and score > self.max_score:
            return False
        return True


class DecisionMapping(_Frozen):
    fund: DecisionThreshold
    partial: DecisionThreshold | None = None
    decline: DecisionThreshold

    def bands(self) -> list[tuple[Recommendation, DecisionThreshold]]:
        """Threshold bands in evaluation order (fund, partial, decline)."""
        out = [(Recommendation.FUND, self.fund)]
        if self.partial is not None:
            out.append((Recommendation.PARTIAL, self.partial))
        out.append((Recommendation.DECLINE, self.decline))
        return out

    def classify(self, score: float) -> Recommendation:
        """Map an overall score to the first band that contains it.

        Scores that fall in a gap between bands (e.g. 3.95 with partial
        capped at 3.9 and fund starting at 4.0) land in the highest band
        whose ``min_score`` they reach.
        """
        bands = self.bands()
        for rec, band in bands:
            if band.contains(score):
                return rec
        for rec, band in bands:
            if band.min_score is not None and score >= band.min_score:
                return rec
        return Recommendation.DECLINE


class RubricConfig(_Frozen):
    categories: list[Category] = []
    rubrics: Rubrics
    decision_mapping: DecisionMapping

    def criterion_count(self) -> int:
        return sum(len(c.criteria) for c in self.categories)


class CommonConfig(_Frozen):
    """Shared half of the modular rubric form."""
    rubrics: Rubrics
    decision_mapping: DecisionMapping


class IndustryCategories(_Frozen):
    """Industry half of the modular rubric form."""
    categories: list[Category]


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class AttachedFile(_Frozen):
    id: int
    usage: str = ""
    path: str | None = None


class Submission(_Frozen):
    startup_name: str
    industry: str
    stage: StageField
    problem_statement: str = ""
    proposed_solution: str = ""
    files: list[AttachedFile] = []
    # question id ("{category}_{criterion}") -> founder's answer
    criteria_answers: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Analysis result (the model's JSON response schema)
# ---------------------------------------------------------------------------


class CriterionScore(_Frozen):
    criterion_name: str
    criterion_weight: float = 0.0
    score: int = Field(ge=0, le=5)
    reasoning: str = ""
    supporting_evidence: list[str] = []
    insufficient_data: bool = False


class CategoryScore(_Frozen):
    category_name: str
    category_weight: float = 0.0
    category_score: float = Field(ge=0.0, le=5.0)
    criteria_scores: list[CriterionScore] = []
    category_reasoning: str = ""


class RiskDimension(_Frozen):
    level: RiskLevelField
    description: str = ""
    concerns: list[str] = []


class RiskAssessment(_Frozen):
    privacy_security: RiskDimension
    compliance: RiskDimension
    market: RiskDimension
    technical: RiskDimension


class DataQuality(_Frozen):
    completeness: CompletenessField
    gaps: list[str] = []
    impact_on_analysis: str = ""


class QualitativeForecast(_Frozen):
    short_term_outlook: str = ""
    medium_term_prospects: str = ""
    long_term_potential: str = ""
    key_success_factors: list[str] = []
    potential_challenges: list[str] = []
    market_trends_impact: str = ""


class AnalysisResult(_Frozen):
    overall_score: float = Field(ge=0.0, le=5.0)
    category_scores: list[CategoryScore]
    risk_assessment: RiskAssessment
    recommendation: RecommendationField
    recommendation_reasoning: str = ""
    key_strengths: list[str] = []
    key_concerns: list[str] = []
    data_quality: DataQuality
    qualitative_forecast: QualitativeForecast | None = None


# ---------------------------------------------------------------------------
# Reviews and reference files
# ---------------------------------------------------------------------------


class ReviewNote(_Frozen):
    id: str = Field(default_factory=new_id)
    content: str
    created_at: datetime = Field(default_factory=utc_now)
    created_by: str = "Bank Officer"


class SubmissionReview(_Frozen):
    id: str
    submission_data: Submission
    analysis_result: AnalysisResult
    status: ReviewStatusField = ReviewStatus.PENDING
    notes: list[ReviewNote] = []
    created_at: datetime
    updated_at: datetime


class ReferenceFile(_Frozen):
    id: str
    industry: str
    filename: str
    stored_path: str
    uploaded_at: datetime
    uploaded_by: str = "Bank Officer"
    description: str | None = None


# ---------------------------------------------------------------------------
# Operation outcomes
# ---------------------------------------------------------------------------


class ErrorKind(StrEnum):
    INVALID_CONFIG = "invalid_config"
    NOT_FOUND = "not_found"
    UNSUPPORTED_FILE = "unsupported_file"
    INVALID_TRANSITION = "invalid_transition"
    INCOMPLETE_SUBMISSION = "incomplete_submission"
    INVALID_INPUT = "invalid_input"
    IO_ERROR = "io_error"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Typed result of a store or config mutation: a value or a described failure."""
    ok: bool
    message: str
    value: T | None = None
    error: ErrorKind | None = None

    @classmethod
    def success(cls, message: str, value: T | None = None) -> Outcome[T]:
        return cls(ok=True, message=message, value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> Outcome[T]:
        return cls(ok=False, message=message, error=error)
