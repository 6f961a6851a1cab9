"""Content structure models: what a contributor says a document looks like."""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class LayoutType(str, Enum):
    TABLE = "table"
    LIST = "list"
    PROSE = "prose"
    FORM = "form"
    IMAGE_ONLY = "image_only"
    MIXED = "mixed"


class ScanQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class HandwritingType(str, Enum):
    PRINTED = "printed"
    CURSIVE = "cursive"
    PRINT_HAND = "print_hand"  # Handwritten block letters
    MIXED = "mixed"


class ColumnDataType(str, Enum):
    """What a column holds, as inferred from its description or header."""

    OWNER_NAME = "owner_name"
    ENSLAVED_NAME = "enslaved_name"
    DATE = "date"
    AGE = "age"
    GENDER = "gender"
    PHYSICAL_CONDITION = "physical_condition"
    TERM_OF_SERVICE = "term_of_service"
    MILITARY = "military"
    COMPENSATION = "compensation"
    WITNESS = "witness"
    NAME = "name"
    LOCATION = "location"
    REMARKS = "remarks"
    UNKNOWN = "unknown"


class Column(BaseModel):
    """One column of a tabular document. Position is the merge key."""

    position: int = Field(ge=1, description="1-based column position, left to right")
    description: str = Field(default="", description="Contributor's words for this column")
    data_type: ColumnDataType = Field(default=ColumnDataType.UNKNOWN)
    header_guess: str | None = Field(default=None, description="Literal header text if known")
    human_provided: bool = Field(default=True)


class HumanReading(BaseModel):
    """Exact text a contributor read off the document (OCR ground truth)."""

    reading_type: str
    exact_text: list[str] | str
    confidence: str = "human_provided"
    note: str | None = None


class StructureDelta(BaseModel):
    """Partial update produced by the description parser.

    ``None`` (or an empty collection) means the signal was not found and
    the corresponding session field must be left untouched.
    """

    raw_input: str = ""
    layout_type: LayoutType | None = None
    columns: list[Column] = Field(default_factory=list)
    scan_quality: ScanQuality | None = None
    handwriting_type: HandwritingType | None = None
    has_partial_view: bool | None = None
    visible_area: dict[str, Any] = Field(default_factory=dict)
    physical_description: dict[str, Any] = Field(default_factory=dict)
    auxiliary_data: dict[str, Any] = Field(default_factory=dict)
    human_readings: list[HumanReading] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            self.layout_type is None
            and not self.columns
            and self.scan_quality is None
            and self.handwriting_type is None
            and self.has_partial_view is None
        )


class ContentStructure(BaseModel):
    """Accumulated understanding of a document's layout."""

    layout_type: LayoutType | None = None
    columns: list[Column] = Field(default_factory=list)
    scan_quality: ScanQuality | None = None
    handwriting_type: HandwritingType | None = None
    has_partial_view: bool = False
    visible_area: dict[str, Any] = Field(default_factory=dict)
    physical_description: dict[str, Any] = Field(default_factory=dict)
    auxiliary_data: dict[str, Any] = Field(default_factory=dict)
    human_readings: list[HumanReading] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    raw_input_history: list[dict[str, Any]] = Field(default_factory=list)

    def column_at(self, position: int) -> Column | None:
        for column in self.columns:
            if column.position == position:
                return column
        return None

    def first_column_of(self, data_type: ColumnDataType) -> Column | None:
        for column in self.columns:
            if column.data_type == data_type:
                return column
        return None

    @property
    def is_tabular(self) -> bool:
        return self.layout_type == LayoutType.TABLE

    def has_enough_info(self) -> bool:
        """Layout known and, for tables, at least one column known."""
        if self.layout_type is None:
            return False
        if self.is_tabular and not self.columns:
            return False
        return True

    def touch_raw_input(self, text: str, delta: StructureDelta) -> None:
        self.raw_input_history.append(
            {
                "input": text,
                "timestamp": datetime.now(UTC).isoformat(),
                "parsed": delta.model_dump(mode="json", exclude={"raw_input"}),
            }
        )
