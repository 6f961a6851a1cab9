"""Extraction guidance derived from a confirmed content structure."""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Difficulty(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecommendedMethod(str, Enum):
    """Approach suggested to the contributor; not the job's method."""

    GUIDED_ENTRY = "guided_entry"
    AUTO_OCR_WITH_REVIEW = "auto_ocr_with_review"
    HTML_EXTRACTION = "html_extraction"
    AUTO_OCR = "auto_ocr"


class ExtractionGuidance(BaseModel):
    contains_owners: bool = False
    contains_enslaved: bool = False
    contains_dates: bool = False
    contains_ages: bool = False
    contains_locations: bool = False

    owner_column_index: int | None = None
    enslaved_column_index: int | None = None

    difficulty_score: int = 0
    expected_difficulty: Difficulty = Difficulty.LOW
    recommended_method: RecommendedMethod = RecommendedMethod.AUTO_OCR

    # Keys are column positions rendered as strings so they survive JSON
    column_mapping: dict[str, str] = Field(default_factory=dict)
    sample_extractions: list[dict[str, Any]] = Field(default_factory=list)


class ExtractionOption(BaseModel):
    id: str
    label: str
    description: str
    best_for: str
    recommended: bool = False
    available: bool = True
