"""Extracted persons, staging leads and the confirmed registry."""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

OWNER_ROLES = frozenset({"owner", "slaveholder", "slave_owner"})


class PersonRole(str, Enum):
    OWNER = "owner"
    SLAVEHOLDER = "slaveholder"
    SLAVE_OWNER = "slave_owner"
    ENSLAVED = "enslaved"
    UNKNOWN = "unknown"


class PromotionType(str, Enum):
    HUMAN_VERIFIED = "human_verified"
    AUTO_HIGH_CONFIDENCE = "auto_high_confidence"


class StagingStatus(str, Enum):
    PENDING = "pending"
    PROMOTED = "promoted"
    REJECTED = "rejected"


class ExtractedPerson(BaseModel):
    """A person read off a document; ephemeral until promoted."""

    full_name: str | None = None
    person_type: str = PersonRole.UNKNOWN.value
    confidence_score: float = 0.0
    source_url: str | None = None
    document_type: str | None = None
    human_verified: bool = False
    lead_id: str | None = None
    birth_year: int | None = None
    death_year: int | None = None
    locations: list[str] = Field(default_factory=list)

    @property
    def is_owner_type(self) -> bool:
        return (self.person_type or "").lower() in OWNER_ROLES


class StagingRecord(BaseModel):
    """An unconfirmed lead awaiting review."""

    lead_id: str
    full_name: str
    person_type: str = PersonRole.UNKNOWN.value
    source_url: str | None = None
    document_type: str | None = None
    confidence_score: float = 0.0
    status: StagingStatus = StagingStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_extracted(self, human_verified: bool = False) -> ExtractedPerson:
        return ExtractedPerson(
            full_name=self.full_name,
            person_type=self.person_type,
            confidence_score=self.confidence_score,
            source_url=self.source_url,
            document_type=self.document_type,
            human_verified=human_verified,
            lead_id=self.lead_id,
        )


class ConfirmedIndividual(BaseModel):
    """Durable registry entity. Full name is the case-insensitive dedup key."""

    individual_id: str
    full_name: str
    first_name: str | None = None
    last_name: str | None = None
    birth_year: int | None = None
    death_year: int | None = None
    location: str | None = None
    notes: str = ""
    source_type: str = "primary"
    source_url: str | None = None
    confidence_score: float = 0.0
    verified: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Qualification(BaseModel):
    qualifies: bool
    reason: str
    confidence: float | None = None
    promotion_type: PromotionType | None = None


class PromotionResult(BaseModel):
    success: bool
    person: str | None = None
    action: str | None = None  # "created" | "updated"
    individual_id: str | None = None
    reason: str | None = None
    confidence: float | None = None
    promotion_type: PromotionType | None = None
    error: bool = False  # True for unreadable rows and write failures, False for rejections
    correlation_id: str | None = None


class BatchPromotionSummary(BaseModel):
    promoted: int = 0
    skipped: int = 0
    errors: int = 0
    evaluated: int = 0
    federal_source: bool = False
    confirmation_channel: str | None = None
    results: list[PromotionResult] = Field(default_factory=list)


class PromotionStats(BaseModel):
    total_individuals: int = 0
    primary_source_count: int = 0
    verified_count: int = 0
    promoted_last_24h: int = 0
