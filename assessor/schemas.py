"""Pydantic request/response schemas for the Assessor API."""
from __future__ import annotations

from pydantic import BaseModel, field_validator

from assessor.models import ReviewStatusField, SubmissionReview


class QuestionOut(BaseModel):
    id: str
    category: str
    criterion: str
    question_text: str
    description: str
    weight: float


class QuestionsOut(BaseModel):
    industry: str
    questions: list[QuestionOut]


class RubricSaveResult(BaseModel):
    industry: str
    message: str


class EvaluationOut(BaseModel):
    message: str
    review: SubmissionReview


class StatusUpdate(BaseModel):
    status: ReviewStatusField


class NoteCreate(BaseModel):
    content: str
    created_by: str = "Bank Officer"

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Note content must not be empty")
        return v


class IndustriesOut(BaseModel):
    bundled: list[str]
    overridden: list[str]


class IndustryDetectRequest(BaseModel):
    text: str


class IndustryDetectOut(BaseModel):
    industry: str | None = None
