"""Shared business logic behind the HTTP API: submission checks and evaluation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from assessor.analysis import AnalysisPipeline
from assessor.config import AnswerPolicy
from assessor.criteria import ConfigStore
from assessor.models import ErrorKind, Outcome, Submission, SubmissionReview
from assessor.questions import Question, generate_questions, unanswered
from assessor.store import ResultStore

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Submission checks
# ---------------------------------------------------------------------------

REQUIRED_FIELDS = (
    ("startup_name", "Startup name is required"),
    ("industry", "Industry is required"),
    ("problem_statement", "Problem statement is required"),
    ("proposed_solution", "Proposed solution is required"),
)


@dataclass(frozen=True)
class SubmissionCheck:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def check_submission(
    submission: Submission,
    questions: list[Question],
    policy: AnswerPolicy = AnswerPolicy.WARN,
) -> SubmissionCheck:
    """Report blocking errors and non-blocking warnings for a submission."""
    errors = [msg for attr, msg in REQUIRED_FIELDS if not str(getattr(submission, attr)).strip()]
    for attached in submission.files:
        if attached.usage.strip() and not attached.path:
            errors.append(f"File {attached.id}: usage description provided but no file selected")

    warnings: list[str] = []
    missing = unanswered(questions, submission.criteria_answers)
    if missing and policy is not AnswerPolicy.OPTIONAL:
        names = ", ".join(q.criterion for q in missing)
        message = f"{len(missing)} evaluation question(s) unanswered: {names}"
        if policy is AnswerPolicy.REQUIRED:
            errors.append(message)
        else:
            warnings.append(message)
    return SubmissionCheck(errors=errors, warnings=warnings)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


async def evaluate_submission(
    submission: Submission,
    config_store: ConfigStore,
    store: ResultStore,
    pipeline: AnalysisPipeline,
    policy: AnswerPolicy = AnswerPolicy.WARN,
) -> Outcome[SubmissionReview]:
    """Check, analyse and upsert one submission.

    The store is only touched after the pipeline returns, so a cancelled
    evaluation leaves no trace.
    """
    config = config_store.load(submission.industry)
    check = check_submission(submission, generate_questions(config), policy)
    if not check.ok:
        return Outcome.failure(ErrorKind.INCOMPLETE_SUBMISSION, "; ".join(check.errors))
    for warning in check.warnings:
        log.info("Submission %s: %s", submission.startup_name, warning)

    result = await pipeline.analyze(
        submission, config, store.list_reference_files(submission.industry),
    )
    outcome = store.upsert_result(submission, result)
    if outcome.ok and check.warnings:
        outcome = replace(outcome, message=f"{outcome.message}. Warnings: {'; '.join(check.warnings)}")
    return outcome
