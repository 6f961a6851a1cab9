"""Contribution session models and the stage order."""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from .analysis import SourceAnalysis
from .guidance import ExtractionGuidance
from .structure import ContentStructure


class Stage(str, Enum):
    """Pipeline stages, declared in order."""

    URL_ANALYSIS = "url_analysis"
    CONTENT_DESCRIPTION = "content_description"
    STRUCTURE_CONFIRMATION = "structure_confirmation"
    EXTRACTION_STRATEGY = "extraction_strategy"
    EXTRACTION_IN_PROGRESS = "extraction_in_progress"
    HUMAN_REVIEW = "human_review"
    FINAL_VALIDATION = "final_validation"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self == Stage.COMPLETE


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


class MessageRole(str, Enum):
    USER = "user"
    SYSTEM = "system"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    role: MessageRole
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Session(BaseModel):
    """One human-guided contribution conversation for one source URL."""

    session_id: str = Field(default_factory=lambda: str(uuid4()))
    url: str
    contributor_id: str | None = None
    current_stage: Stage = Stage.URL_ANALYSIS
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    source_metadata: SourceAnalysis | None = None
    content_structure: ContentStructure | None = None
    extraction_guidance: ExtractionGuidance | None = None
    processing_instructions: dict[str, Any] | None = None
    status: SessionStatus = SessionStatus.IN_PROGRESS
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    version: int = 0

    def add_message(self, role: MessageRole, message: str, **metadata: Any) -> ConversationMessage:
        entry = ConversationMessage(role=role, message=message, metadata=metadata)
        self.conversation_history.append(entry)
        return entry

    def ensure_structure(self) -> ContentStructure:
        if self.content_structure is None:
            self.content_structure = ContentStructure()
        return self.content_structure


class SessionSummary(BaseModel):
    session_id: str
    url: str
    stage: Stage
    stage_index: int
    total_stages: int
    source: str | None = None
    document_title: str | None = None
    status: SessionStatus
    message_count: int
    last_activity: datetime

    @classmethod
    def of(cls, session: Session) -> SessionSummary:
        sm = session.source_metadata
        return cls(
            session_id=session.session_id,
            url=session.url,
            stage=session.current_stage,
            stage_index=session.current_stage.order,
            total_stages=len(STAGE_ORDER),
            source=(sm.archive_name or sm.domain) if sm else None,
            document_title=sm.document_title if sm else None,
            status=session.status,
            message_count=len(session.conversation_history),
            last_activity=session.updated_at,
        )
