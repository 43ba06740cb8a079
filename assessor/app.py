from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import PlainTextResponse

from assessor import services
from assessor.analysis import AnalysisPipeline, format_analysis
from assessor.config import Settings, get_settings
from assessor.criteria import ConfigStore
from assessor.llm import build_client
from assessor.models import ErrorKind, Outcome, ReferenceFile, RubricConfig, Submission, SubmissionReview
from assessor.questions import generate_questions
from assessor.schemas import (
    EvaluationOut,
    IndustriesOut,
    IndustryDetectOut,
    IndustryDetectRequest,
    NoteCreate,
    QuestionOut,
    QuestionsOut,
    RubricSaveResult,
    StatusUpdate,
)
from assessor.store import ResultStore

log = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        cfg.ensure_directories()
        store = ResultStore(cfg.data_dir)
        app.state.settings = cfg
        app.state.store = store
        app.state.config_store = ConfigStore(cfg.rubrics_dir, overrides=store, weight_tolerance=cfg.weight_tolerance)
        app.state.pipeline = AnalysisPipeline(
            build_client(cfg.llm_provider, cfg.llm_model),
            timeout_seconds=cfg.llm_timeout_seconds,
            csv_row_limit=cfg.csv_row_limit,
            detection_chars=cfg.industry_detection_chars,
        )
        log.info("Assessor started with data in %s", cfg.data_dir)
        yield

    app = FastAPI(
        title="Assessor",
        version="0.1.0",
        description=(
            "Startup evaluation API for bank reviewers. "
            "Configure weighted rubrics, generate founder questionnaires, "
            "run AI-assisted analyses and track review decisions. "
            "All endpoints return JSON unless noted."
        ),
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Rubrics", "description": "Load, override and reset industry rubrics."},
            {"name": "Questions", "description": "Founder questionnaire generated from a rubric."},
            {"name": "Evaluation", "description": "LLM-powered analysis. Falls back to a placeholder without an API key."},
            {"name": "Reviews", "description": "Stored reviews, status workflow and notes."},
            {"name": "Reference Files", "description": "Industry CSV/TXT data used to ground analyses."},
        ],
    )
    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def get_store(request: Request) -> ResultStore:
    return request.app.state.store


def get_config_store(request: Request) -> ConfigStore:
    return request.app.state.config_store


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


_ERROR_STATUS = {ErrorKind.NOT_FOUND: 404, ErrorKind.IO_ERROR: 500}


def _unwrap(outcome: Outcome):
    if not outcome.ok:
        raise HTTPException(_ERROR_STATUS.get(outcome.error, 400), outcome.message)
    return outcome.value


def _get_or_404(store: ResultStore, review_id: str) -> SubmissionReview:
    review = store.get_review(review_id)
    if review is None:
        raise HTTPException(404, "Submission not found")
    return review


def _register_routes(app: FastAPI) -> None:

    # -----------------------------------------------------------------------
    # Routes: Rubrics
    # -----------------------------------------------------------------------

    @app.get("/api/industries", response_model=IndustriesOut,
             tags=["Rubrics"], summary="Industries with bundled rubrics and reviewer overrides")
    async def list_industries(
        config_store: ConfigStore = Depends(get_config_store),
        store: ResultStore = Depends(get_store),
    ):
        return {"bundled": config_store.known_industries(), "overridden": store.industries_with_overrides()}

    @app.get("/api/rubrics/{industry}", response_model=RubricConfig,
             tags=["Rubrics"], summary="Resolved rubric for an industry")
    async def get_rubric(industry: str, config_store: ConfigStore = Depends(get_config_store)):
        return config_store.load(industry)

    @app.put("/api/rubrics/{industry}", response_model=RubricSaveResult,
             tags=["Rubrics"], summary="Save a reviewer rubric override (weights are validated)")
    async def save_rubric(
        industry: str, body: RubricConfig, config_store: ConfigStore = Depends(get_config_store),
    ):
        outcome = config_store.save(industry, body)
        _unwrap(outcome)
        return {"industry": industry, "message": outcome.message}

    @app.delete("/api/rubrics/{industry}", tags=["Rubrics"], summary="Remove a rubric override")
    async def reset_rubric(industry: str, store: ResultStore = Depends(get_store)):
        outcome = store.delete_rubric_override(industry)
        _unwrap(outcome)
        return {"ok": True, "message": outcome.message}

    # -----------------------------------------------------------------------
    # Routes: Questions
    # -----------------------------------------------------------------------

    @app.get("/api/questions/{industry}", response_model=QuestionsOut,
             tags=["Questions"], summary="Founder questionnaire for an industry's rubric")
    async def get_questions(industry: str, config_store: ConfigStore = Depends(get_config_store)):
        questions = generate_questions(config_store.load(industry))
        return {"industry": industry, "questions": [QuestionOut(**vars(q)) for q in questions]}

    # -----------------------------------------------------------------------
    # Routes: Evaluation
    # -----------------------------------------------------------------------

    @app.post("/api/evaluate", response_model=EvaluationOut,
              tags=["Evaluation"], summary="Analyse a submission and store the review")
    async def evaluate(
        body: Submission,
        request: Request,
        config_store: ConfigStore = Depends(get_config_store),
        store: ResultStore = Depends(get_store),
        pipeline: AnalysisPipeline = Depends(get_pipeline),
    ):
        outcome = await services.evaluate_submission(
            body, config_store, store, pipeline, request.app.state.settings.answer_policy,
        )
        review = _unwrap(outcome)
        return {"message": outcome.message, "review": review}

    @app.post("/api/detect-industry", response_model=IndustryDetectOut,
              tags=["Evaluation"], summary="Guess the industry of a business plan text")
    async def detect_industry(body: IndustryDetectRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
        return {"industry": await pipeline.detect_industry(body.text)}

    # -----------------------------------------------------------------------
    # Routes: Reviews
    # -----------------------------------------------------------------------

    @app.get("/api/reviews", response_model=list[SubmissionReview],
             tags=["Reviews"], summary="All reviews in submission order")
    async def list_reviews(store: ResultStore = Depends(get_store)):
        return store.list_all()

    @app.get("/api/reviews/{review_id}", response_model=SubmissionReview,
             tags=["Reviews"], summary="One review")
    async def get_review(review_id: str, store: ResultStore = Depends(get_store)):
        return _get_or_404(store, review_id)

    @app.get("/api/reviews/{review_id}/report", response_class=PlainTextResponse,
             tags=["Reviews"], summary="Plain-text analysis report")
    async def get_report(review_id: str, store: ResultStore = Depends(get_store)):
        return format_analysis(_get_or_404(store, review_id).analysis_result)

    @app.put("/api/reviews/{review_id}/status", response_model=SubmissionReview,
             tags=["Reviews"], summary="Move a review forward in the workflow")
    async def set_status(review_id: str, body: StatusUpdate, store: ResultStore = Depends(get_store)):
        return _unwrap(store.set_status(review_id, body.status))

    @app.post("/api/reviews/{review_id}/notes", response_model=SubmissionReview,
              tags=["Reviews"], summary="Append a reviewer note")
    async def add_note(review_id: str, body: NoteCreate, store: ResultStore = Depends(get_store)):
        return _unwrap(store.append_note(review_id, body.content, body.created_by))

    # -----------------------------------------------------------------------
    # Routes: Reference files
    # -----------------------------------------------------------------------

    @app.post("/api/reference-files", response_model=ReferenceFile,
              tags=["Reference Files"], summary="Upload a CSV or TXT reference file")
    async def upload_reference_file(
        industry: str = Form(...),
        description: str | None = Form(None),
        uploaded_by: str = Form("Bank Officer"),
        file: UploadFile = File(...),
        store: ResultStore = Depends(get_store),
    ):
        content = await file.read()
        return _unwrap(store.upload_reference_file(
            industry, content, filename=file.filename or "",
            description=description, uploaded_by=uploaded_by,
        ))

    @app.get("/api/reference-files", response_model=list[ReferenceFile],
             tags=["Reference Files"], summary="List reference files, optionally by industry")
    async def list_reference_files(
        industry: str | None = Query(None, description="Case-insensitive industry filter"),
        store: ResultStore = Depends(get_store),
    ):
        return store.list_reference_files(industry)

    @app.delete("/api/reference-files/{file_id}",
                tags=["Reference Files"], summary="Delete a reference file and its stored bytes")
    async def delete_reference_file(file_id: str, store: ResultStore = Depends(get_store)):
        outcome = store.delete_reference_file(file_id)
        _unwrap(outcome)
        return {"ok": True, "message": outcome.message}


app = create_app()
