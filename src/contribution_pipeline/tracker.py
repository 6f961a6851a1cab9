"""Extraction job tracker.

Jobs move ``pending -> processing -> completed | failed``. The pipeline
only records intent; an external :class:`ExtractionBackend` does the work
and reports back through the backend-facing methods here. Callers poll
:meth:`ExtractionTracker.get_status`.
"""
from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError as ModelValidationError

from .config import CONFIG, PipelineConfig
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .logging import get_logger
from .models import (
    Correction,
    CorrectionReceipt,
    ExtractionJob,
    ExtractionMethod,
    JobStatus,
    JobStatusView,
    Session,
)
from .row_parser import is_illegible, parse_rows
from .storage import ContributionStorage

logger = get_logger("contribution_pipeline.tracker")

FORBIDDEN_MARKERS = ("403", "Forbidden")

AWAITING_INPUT = {
    ExtractionMethod.MANUAL_TEXT: "Waiting for user to provide text",
    ExtractionMethod.SCREENSHOT_UPLOAD: "Waiting for user to upload screenshots",
    ExtractionMethod.CSV_UPLOAD: "Waiting for user to upload a CSV file",
}


@runtime_checkable
class ExtractionBackend(Protocol):
    """Anything that can take an extraction job and eventually report back.

    ``submit`` must return promptly; the work itself happens elsewhere.
    """

    def submit(self, job: ExtractionJob) -> None:
        ...


def parse_method(method: Any) -> ExtractionMethod:
    try:
        return ExtractionMethod(method)
    except ValueError:
        valid = ", ".join(ExtractionMethod.values())
        raise ValidationError(f"Invalid extraction method {method!r}. Valid methods: {valid}") from None


class ExtractionTracker:
    """Records extraction jobs, their progress and human corrections."""

    def __init__(self, storage: ContributionStorage, config: PipelineConfig = CONFIG):
        self.storage = storage
        self.config = config

    # =========================================================================
    # Creation and lookup
    # =========================================================================

    def create_job(self, session: Session, method: Any, options: dict[str, Any] | None = None) -> ExtractionJob:
        extraction_method = parse_method(method)
        analysis = session.source_metadata
        job = ExtractionJob(
            session_id=session.session_id,
            content_url=(analysis.content_url if analysis else None) or session.url,
            content_type=analysis.content_type.value if analysis else None,
            method=extraction_method,
            options=dict(options or {}),
            status_message=AWAITING_INPUT.get(extraction_method),
        )
        self.storage.save_job(job)
        logger.info(
            "tracker.job_created",
            extraction_id=job.extraction_id,
            session_id=session.session_id,
            method=extraction_method.value,
        )
        return job

    def get_job(self, extraction_id: str) -> ExtractionJob:
        job = self.storage.get_job(extraction_id)
        if job is None:
            raise NotFoundError("Extraction job", extraction_id)
        return job

    def _open_job(self, extraction_id: str) -> ExtractionJob:
        job = self.get_job(extraction_id)
        if job.status.is_terminal:
            raise ValidationError(f"Extraction job {extraction_id} is already {job.status.value}")
        return job

    # =========================================================================
    # Backend-facing transitions
    # =========================================================================

    def mark_processing(self, extraction_id: str, progress: int = 0, message: str | None = None) -> ExtractionJob:
        job = self._open_job(extraction_id)
        job.status = JobStatus.PROCESSING
        job.progress = max(job.progress, min(progress, 100))
        job.started_at = job.started_at or datetime.now(UTC)
        if message is not None:
            job.status_message = message
        return self.storage.save_job(job)

    def record_progress(
        self,
        extraction_id: str,
        progress: int,
        message: str | None = None,
        debug: Any = None,
    ) -> ExtractionJob:
        job = self._open_job(extraction_id)
        if job.status == JobStatus.PENDING:
            job.status = JobStatus.PROCESSING
            job.started_at = datetime.now(UTC)
        job.progress = max(0, min(progress, 100))
        if message is not None:
            job.status_message = message
        if debug is not None:
            job.debug_log = debug
        return self.storage.save_job(job)

    def complete_job(
        self,
        extraction_id: str,
        rows: list[dict[str, Any]],
        raw_text: str | None = None,
    ) -> ExtractionJob:
        job = self._open_job(extraction_id)
        rows = list(rows or [])
        confidences = [self._row_confidence(r) for r in rows]
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.parsed_rows = rows
        job.raw_text = raw_text if raw_text is not None else job.raw_text
        job.row_count = len(rows)
        job.avg_confidence = round(sum(confidences) / len(confidences), 2) if confidences else 0.0
        job.illegible_count = sum(1 for r in rows if is_illegible(r))
        job.status_message = None
        job.started_at = job.started_at or datetime.now(UTC)
        job.completed_at = datetime.now(UTC)
        self.storage.save_job(job)
        logger.info(
            "tracker.job_completed",
            extraction_id=extraction_id,
            row_count=job.row_count,
            avg_confidence=job.avg_confidence,
            illegible=job.illegible_count,
        )
        return job

    def _row_confidence(self, row: dict[str, Any]) -> float:
        try:
            return float(row["confidence"])
        except (KeyError, TypeError, ValueError):
            return self.config.default_row_confidence

    def fail_job(self, extraction_id: str, error: str | BaseException) -> ExtractionJob:
        job = self._open_job(extraction_id)
        message = str(error) or type(error).__name__
        job.status = JobStatus.FAILED
        job.error_message = message
        job.completed_at = datetime.now(UTC)
        if any(marker in message for marker in FORBIDDEN_MARKERS):
            job.suggested_fallback = ExtractionMethod.BROWSER_BASED_OCR.value
            job.status_message = "Direct download failed. Try: browser_based_ocr"
        self.storage.save_job(job)
        logger.warning(
            "tracker.job_failed",
            extraction_id=extraction_id,
            error=message,
            suggested_fallback=job.suggested_fallback,
        )
        return job

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(
        self,
        extraction_id: str,
        session_id: str,
        include_rows: bool = False,
        debug: bool = False,
    ) -> JobStatusView:
        job = self.storage.get_job(extraction_id)
        if job is None or job.session_id != session_id:
            raise NotFoundError("Extraction job", extraction_id)
        return JobStatusView(
            extraction_id=job.extraction_id,
            method=job.method,
            status=job.status,
            status_message=job.status_message,
            progress=job.progress,
            row_count=job.row_count,
            avg_confidence=job.avg_confidence,
            human_corrections=job.human_corrections,
            illegible_count=job.illegible_count,
            error=job.error_message,
            suggested_fallback=job.suggested_fallback,
            started_at=job.started_at,
            completed_at=job.completed_at,
            parsed_rows=job.parsed_rows if include_rows else None,
            debug_log=job.debug_log if debug else None,
        )

    # =========================================================================
    # Corrections
    # =========================================================================

    def submit_corrections(
        self,
        extraction_id: str,
        corrections: Any,
        corrected_by: str | None = None,
    ) -> CorrectionReceipt:
        """Append each correction independently.

        A correction that fails validation or fails to write is counted in
        ``failed``; corrections already written stay written.
        """
        if not isinstance(corrections, list):
            raise ValidationError("Corrections must be a list")
        self.get_job(extraction_id)

        receipt = CorrectionReceipt()
        for item in corrections:
            try:
                payload = dict(item)
                payload.setdefault("field_name", payload.pop("field", None))
                payload["extraction_id"] = extraction_id
                if corrected_by and not payload.get("corrected_by"):
                    payload["corrected_by"] = corrected_by
                for key in ("original_value", "corrected_value"):
                    if payload.get(key) is not None:
                        payload[key] = str(payload[key])
                correction = Correction.model_validate({k: v for k, v in payload.items() if v is not None})
            except (TypeError, ValueError, ModelValidationError) as exc:
                receipt.failed += 1
                logger.warning("tracker.correction_invalid", extraction_id=extraction_id, error=str(exc))
                continue
            try:
                self.storage.append_correction(correction)
            except PersistenceError as exc:
                receipt.failed += 1
                receipt.correlation_ids.append(exc.correlation_id)
                logger.error(
                    "tracker.correction_write_failed",
                    extraction_id=extraction_id,
                    row_index=correction.row_index,
                    field=correction.field_name,
                    correlation_id=exc.correlation_id,
                )
                continue
            receipt.applied += 1

        logger.info(
            "tracker.corrections_submitted",
            extraction_id=extraction_id,
            applied=receipt.applied,
            failed=receipt.failed,
        )
        return receipt

    def list_corrections(self, extraction_id: str) -> list[Correction]:
        self.get_job(extraction_id)
        return self.storage.list_corrections(extraction_id)

    def corrected_rows(self, extraction_id: str) -> list[dict[str, Any]]:
        """Parsed rows with corrections overlaid; the stored rows are untouched."""
        job = self.get_job(extraction_id)
        rows = copy.deepcopy(job.parsed_rows or [])
        latest: dict[tuple[str, int, str], Correction] = {}
        for correction in self.storage.list_corrections(extraction_id):
            latest[correction.key] = correction

        for (_, row_index, field_name), correction in latest.items():
            if row_index >= len(rows):
                continue
            row = rows[row_index]
            _overlay(row, field_name, correction.corrected_value)
            row["corrected"] = True
        return rows

    # =========================================================================
    # Transcribed intake
    # =========================================================================

    def process_manual_text(self, extraction_id: str, text: str) -> ExtractionJob:
        """Parse contributor-transcribed text against the session's columns and complete the job."""
        if not text or not text.strip():
            raise ValidationError("Transcribed text is required")
        job = self._open_job(extraction_id)
        session = self.storage.get_session(job.session_id)
        if session is None:
            raise NotFoundError("Session", job.session_id)
        columns = session.content_structure.columns if session.content_structure else []
        rows = parse_rows(text, columns, as_csv=job.method == ExtractionMethod.CSV_UPLOAD)
        return self.complete_job(extraction_id, rows, raw_text=text)


def _overlay(row: dict[str, Any], field_name: str, value: Any) -> None:
    if field_name.startswith("columns."):
        row.setdefault("columns", {})[field_name.split(".", 1)[1]] = value
    elif field_name not in row and isinstance(row.get("columns"), dict):
        row["columns"][field_name] = value
    else:
        row[field_name] = value
