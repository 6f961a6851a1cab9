"""Extraction job and correction models."""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class ExtractionMethod(str, Enum):
    AUTO_OCR = "auto_ocr"
    BROWSER_BASED_OCR = "browser_based_ocr"
    MANUAL_TEXT = "manual_text"
    SCREENSHOT_UPLOAD = "screenshot_upload"
    GUIDED_ENTRY = "guided_entry"
    SAMPLE_LEARN = "sample_learn"
    CSV_UPLOAD = "csv_upload"

    @classmethod
    def values(cls) -> list[str]:
        return [m.value for m in cls]


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ExtractionJob(BaseModel):
    """One attempt by an extraction backend to turn a document into rows."""

    extraction_id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    content_url: str
    content_type: str | None = None
    method: ExtractionMethod
    status: JobStatus = JobStatus.PENDING
    status_message: str | None = None
    progress: int = Field(default=0, ge=0, le=100)
    options: dict[str, Any] = Field(default_factory=dict)
    raw_text: str | None = None
    parsed_rows: list[dict[str, Any]] | None = None
    row_count: int = 0
    avg_confidence: float | None = None
    human_corrections: int = 0
    illegible_count: int = 0
    error_message: str | None = None
    suggested_fallback: str | None = None
    debug_log: Any = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Correction(BaseModel):
    """Human override of one field in one parsed row. Append-only."""

    extraction_id: str
    row_index: int = Field(ge=0)
    field_name: str
    original_value: str | None = None
    corrected_value: str | None = None
    corrected_by: str = "anonymous"
    corrected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.extraction_id, self.row_index, self.field_name)


class CorrectionReceipt(BaseModel):
    applied: int = 0
    failed: int = 0
    correlation_ids: list[str] = Field(default_factory=list)


class JobStatusView(BaseModel):
    """Progress report for a polling caller."""

    extraction_id: str
    method: ExtractionMethod
    status: JobStatus
    status_message: str | None = None
    progress: int = 0
    row_count: int = 0
    avg_confidence: float | None = None
    human_corrections: int = 0
    illegible_count: int = 0
    error: str | None = None
    suggested_fallback: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    parsed_rows: list[dict[str, Any]] | None = None
    debug_log: Any = None
