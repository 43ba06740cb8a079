"""Durable JSON-document store for reviews, reference files and rubric overrides.

Layout under ``data_dir``::

    submissions.json                 list of SubmissionReview, insertion order
    reference_files.json             list of ReferenceFile metadata
    reference_files/<id>_<name>      managed copies of uploaded bytes
    criteria_overrides/<slug>.json   reviewer-authored RubricConfig per industry

Writers are serialised by one lock. Each mutation builds a new immutable
snapshot, writes it atomically, then swaps it in; readers use whichever
snapshot is current without locking. When a write fails with ``OSError`` the
new snapshot is still applied in memory and the failure is logged; a restart
reloads whatever is on disk. Entries that fail validation on load are kept
as raw JSON and written back with every save; an unparsable document is
renamed to ``<name>.corrupt-<timestamp>`` instead of being overwritten.
"""
from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from assessor.criteria import DEFAULT_WEIGHT_TOLERANCE, validate_weights
from assessor.models import (
    STATUS_RANK,
    AnalysisResult,
    ErrorKind,
    Outcome,
    ReferenceFile,
    ReviewNote,
    ReviewStatus,
    RubricConfig,
    Submission,
    SubmissionReview,
)
from assessor.reference_data import is_supported
from assessor.utils import new_id, read_json_file, slugify, utc_now, write_json_atomic

log = logging.getLogger(__name__)

SUBMISSIONS_FILE = "submissions.json"
REFERENCE_INDEX_FILE = "reference_files.json"
REFERENCE_DIR = "reference_files"
OVERRIDES_DIR = "criteria_overrides"

DEFAULT_AUTHOR = "Bank Officer"


def can_transition(current: ReviewStatus, new: ReviewStatus) -> bool:
    """Forward-only workflow; decisions may be swapped for one another."""
    return STATUS_RANK[new] >= STATUS_RANK[current]


def _safe_filename(name: str) -> str:
    return Path(name).name.replace("\x00", "").strip() or "upload"


class ResultStore:
    """Submission reviews, reference files and rubric overrides on local disk."""

    def __init__(self, data_dir: Path | str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        reviews, self._rejected_reviews = self._load_list(self.submissions_path, SubmissionReview)
        refs, self._rejected_references = self._load_list(self.reference_index_path, ReferenceFile)
        self._reviews: tuple[SubmissionReview, ...] = tuple(reviews)
        self._references: tuple[ReferenceFile, ...] = tuple(refs)
        log.info(
            "Loaded %d reviews and %d reference files from %s",
            len(self._reviews), len(self._references), self.data_dir,
        )

    # -- paths -------------------------------------------------------------

    @property
    def submissions_path(self) -> Path:
        return self.data_dir / SUBMISSIONS_FILE

    @property
    def reference_index_path(self) -> Path:
        return self.data_dir / REFERENCE_INDEX_FILE

    @property
    def reference_dir(self) -> Path:
        return self.data_dir / REFERENCE_DIR

    @property
    def overrides_dir(self) -> Path:
        return self.data_dir / OVERRIDES_DIR

    def override_path(self, industry: str) -> Path:
        return self.overrides_dir / f"{slugify(industry)}.json"

    # -- persistence helpers ----------------------------------------------

    def _load_list(self, path: Path, model: type) -> tuple[list, list[Any]]:
        """Validated entries plus the raw entries that failed validation.

        Rejected entries are written back untouched on every save. A document
        that cannot be parsed at all is renamed aside before anything
        overwrites it.
        """
        try:
            raw = read_json_file(path, [])
        except (OSError, json.JSONDecodeError) as exc:
            log.error("Could not read %s: %s", path, exc)
            self._set_aside(path)
            return [], []
        if not isinstance(raw, list):
            log.error("%s does not hold a list", path)
            self._set_aside(path)
            return [], []
        items: list = []
        rejected: list[Any] = []
        for i, entry in enumerate(raw):
            try:
                items.append(model.model_validate(entry))
            except ValidationError as exc:
                log.error("Keeping unreadable entry %d in %s as stored: %s", i, path.name, exc)
                rejected.append(entry)
        return items, rejected

    @staticmethod
    def _set_aside(path: Path) -> None:
        target = path.with_name(f"{path.name}.corrupt-{utc_now():%Y%m%dT%H%M%S%f}")
        try:
            path.replace(target)
        except OSError as exc:
            log.error("Could not move %s aside: %s", path, exc)
            return
        log.error("Moved unreadable %s to %s", path.name, target.name)

    def _persist(self, path: Path, items: tuple, rejected: list[Any]) -> None:
        try:
            write_json_atomic(path, [item.model_dump(mode="json") for item in items] + rejected)
        except OSError as exc:
            log.warning("Failed to persist %s; change kept in memory only: %s", path, exc)

    def _commit_reviews(self, reviews: tuple[SubmissionReview, ...]) -> None:
        self._persist(self.submissions_path, reviews, self._rejected_reviews)
        self._reviews = reviews

    def _commit_references(self, refs: tuple[ReferenceFile, ...]) -> None:
        self._persist(self.reference_index_path, refs, self._rejected_references)
        self._references = refs

    # -- reviews -----------------------------------------------------------

    def list_all(self) -> list[SubmissionReview]:
        return list(self._reviews)

    def get_review(self, review_id: str) -> SubmissionReview | None:
        return next((r for r in self._reviews if r.id == review_id), None)

    def find_by_startup(self, startup_name: str) -> SubmissionReview | None:
        return next((r for r in self._reviews if r.submission_data.startup_name == startup_name), None)

    def upsert_result(self, submission: Submission, result: AnalysisResult) -> Outcome[SubmissionReview]:
        """Insert or replace the review keyed by the exact startup name."""
        with self._lock:
            now = utc_now()
            reviews = list(self._reviews)
            for i, existing in enumerate(reviews):
                if existing.submission_data.startup_name == submission.startup_name:
                    review = existing.model_copy(update={
                        "submission_data": submission,
                        "analysis_result": result,
                        "updated_at": now,
                    })
                    reviews[i] = review
                    message = f"Updated review for {submission.startup_name}"
                    break
            else:
                review = SubmissionReview(
                    id=new_id(),
                    submission_data=submission,
                    analysis_result=result,
                    created_at=now,
                    updated_at=now,
                )
                reviews.append(review)
                message = f"Created review for {submission.startup_name}"
            self._commit_reviews(tuple(reviews))
        log.info("%s (%s)", message, review.id)
        return Outcome.success(message, review)

    def _update_review(
        self,
        review_id: str,
        change: Callable[[SubmissionReview], SubmissionReview | Outcome[SubmissionReview]],
    ) -> Outcome[SubmissionReview]:
        with self._lock:
            reviews = list(self._reviews)
            for i, existing in enumerate(reviews):
                if existing.id == review_id:
                    break
            else:
                return Outcome.failure(ErrorKind.NOT_FOUND, "Submission not found")
            updated = change(existing)
            if isinstance(updated, Outcome):
                return updated
            if updated is existing:
                return Outcome.success("No change", existing)
            reviews[i] = updated
            self._commit_reviews(tuple(reviews))
        return Outcome.success("Review updated", updated)

    def set_status(self, review_id: str, status: ReviewStatus | str) -> Outcome[SubmissionReview]:
        try:
            new_status = ReviewStatus(str(status).strip().upper().replace(" ", "_"))
        except ValueError:
            return Outcome.failure(ErrorKind.INVALID_TRANSITION, f"Unknown status {status!r}")

        def change(review: SubmissionReview) -> SubmissionReview | Outcome[SubmissionReview]:
            if review.status == new_status:
                return review
            if not can_transition(review.status, new_status):
                return Outcome.failure(
                    ErrorKind.INVALID_TRANSITION,
                    f"Cannot move review from {review.status.value} back to {new_status.value}",
                )
            return review.model_copy(update={"status": new_status, "updated_at": utc_now()})

        outcome = self._update_review(review_id, change)
        if outcome.ok:
            log.info("Review %s status is %s", review_id, new_status.value)
        return outcome

    def append_note(
        self, review_id: str, content: str, created_by: str = DEFAULT_AUTHOR,
    ) -> Outcome[SubmissionReview]:
        if not content.strip():
            return Outcome.failure(ErrorKind.INVALID_INPUT, "Note content is empty")
        note = ReviewNote(content=content.strip(), created_by=created_by or DEFAULT_AUTHOR)

        def change(review: SubmissionReview) -> SubmissionReview:
            return review.model_copy(update={"notes": [*review.notes, note], "updated_at": utc_now()})

        return self._update_review(review_id, change)

    # -- reference files ---------------------------------------------------

    def list_reference_files(self, industry: str | None = None) -> list[ReferenceFile]:
        if industry is None:
            return list(self._references)
        wanted = industry.strip().casefold()
        return [r for r in self._references if r.industry.strip().casefold() == wanted]

    def get_reference_file(self, file_id: str) -> ReferenceFile | None:
        return next((r for r in self._references if r.id == file_id), None)

    def upload_reference_file(
        self,
        industry: str,
        source: Path | str | bytes,
        *,
        filename: str | None = None,
        description: str | None = None,
        uploaded_by: str = DEFAULT_AUTHOR,
    ) -> Outcome[ReferenceFile]:
        """Copy a CSV/TXT payload into managed storage and record its metadata.

        *source* is either a path to read now or the raw bytes; *filename* is
        required for bytes and defaults to the path's name otherwise.
        """
        if isinstance(source, bytes):
            if not filename:
                return Outcome.failure(ErrorKind.INVALID_INPUT, "A filename is required for uploaded bytes")
            name = _safe_filename(filename)
        else:
            name = _safe_filename(filename or Path(source).name)
        if not is_supported(name):
            return Outcome.failure(ErrorKind.UNSUPPORTED_FILE, "Only CSV and TXT files are allowed")
        if not industry.strip():
            return Outcome.failure(ErrorKind.INVALID_INPUT, "Industry is required")

        if isinstance(source, bytes):
            payload = source
        else:
            try:
                payload = Path(source).read_bytes()
            except OSError as exc:
                return Outcome.failure(ErrorKind.NOT_FOUND, f"File not found: {exc}")

        file_id = new_id()
        stored = self.reference_dir / f"{file_id}_{name}"
        with self._lock:
            try:
                self.reference_dir.mkdir(parents=True, exist_ok=True)
                stored.write_bytes(payload)
            except OSError as exc:
                log.warning("Could not store reference file %s: %s", name, exc)
                return Outcome.failure(ErrorKind.IO_ERROR, f"Could not store file: {exc}")
            ref = ReferenceFile(
                id=file_id,
                industry=industry.strip(),
                filename=name,
                stored_path=str(stored),
                uploaded_at=utc_now(),
                uploaded_by=uploaded_by or DEFAULT_AUTHOR,
                description=(description or "").strip() or None,
            )
            self._commit_references((*self._references, ref))
        log.info("Uploaded reference file %s for %s (%s)", name, ref.industry, file_id)
        return Outcome.success("File uploaded successfully", ref)

    def delete_reference_file(self, file_id: str) -> Outcome[ReferenceFile]:
        with self._lock:
            ref = self.get_reference_file(file_id)
            if ref is None:
                return Outcome.failure(ErrorKind.NOT_FOUND, "File not found")
            try:
                Path(ref.stored_path).unlink(missing_ok=True)
            except OSError as exc:
                log.warning("Could not remove stored bytes for %s: %s", ref.filename, exc)
            self._commit_references(tuple(r for r in self._references if r.id != file_id))
        log.info("Deleted reference file %s (%s)", ref.filename, file_id)
        return Outcome.success("File deleted successfully", ref)

    # -- rubric overrides --------------------------------------------------

    def load_rubric_override(self, industry: str) -> RubricConfig | None:
        """The saved override for *industry*; raises if the document is corrupt."""
        path = self.override_path(industry)
        raw = read_json_file(path, None)
        if raw is None:
            return None
        return RubricConfig.model_validate(raw)

    def save_rubric_override(
        self, industry: str, config: RubricConfig, tolerance: float = DEFAULT_WEIGHT_TOLERANCE,
    ) -> Outcome[RubricConfig]:
        problems = validate_weights(config, tolerance)
        if problems:
            return Outcome.failure(ErrorKind.INVALID_CONFIG, "; ".join(problems))
        with self._lock:
            try:
                write_json_atomic(self.override_path(industry), config.model_dump(mode="json"))
            except OSError as exc:
                log.warning("Failed to persist rubric override for %s: %s", industry, exc)
                return Outcome.failure(ErrorKind.IO_ERROR, f"Could not save configuration: {exc}")
        log.info("Saved rubric override for %s", industry)
        return Outcome.success(f"Criteria configuration saved for {industry}", config)

    def delete_rubric_override(self, industry: str) -> Outcome[None]:
        path = self.override_path(industry)
        with self._lock:
            if not path.exists():
                return Outcome.failure(ErrorKind.NOT_FOUND, f"No saved configuration for {industry}")
            try:
                path.unlink()
            except OSError as exc:
                log.warning("Could not delete rubric override %s: %s", path, exc)
                return Outcome.failure(ErrorKind.IO_ERROR, f"Could not delete configuration: {exc}")
        log.info("Deleted rubric override for %s", industry)
        return Outcome.success(f"Criteria configuration reset for {industry}")

    def industries_with_overrides(self) -> list[str]:
        if not self.overrides_dir.is_dir():
            return []
        return sorted(p.stem.replace("_", " ").title() for p in self.overrides_dir.glob("*.json"))
