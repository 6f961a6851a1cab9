"""URL analysis results and the questions they raise."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    """Kind of archive hosting the document (not its confirmation status)."""

    PRIMARY = "primary"  # Government / institutional archive
    SECONDARY = "secondary"  # Genealogy database, index, transcription
    TERTIARY = "tertiary"  # Encyclopedia, article
    UNKNOWN = "unknown"


class ContentAccess(str, Enum):
    DIRECT = "direct"
    PDF_LINK = "pdf_link"
    DIRECT_PDF = "direct_pdf"
    PROTECTED_PDF = "protected_pdf"
    AUTH_REQUIRED = "auth_required"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class ContentType(str, Enum):
    PDF = "pdf"
    IFRAME = "iframe"
    HTML_ARTICLE = "html_article"
    HTML_PAGE = "html_page"
    UNKNOWN = "unknown"


class Pagination(BaseModel):
    detected: bool = False
    current_page: int | None = None
    total_pages: int | None = None
    pattern: str | None = None
    next_url: str | None = None
    prev_url: str | None = None


class AnalysisError(BaseModel):
    """Non-fatal problem recorded while analysing a URL."""

    stage: str
    message: str


class SourceAnalysis(BaseModel):
    """Everything learned about a source URL from a single fetch."""

    url: str
    final_url: str
    domain: str | None = None
    archive_name: str | None = None
    source_type: SourceType = SourceType.UNKNOWN
    content_access: ContentAccess = ContentAccess.UNKNOWN
    content_type: ContentType = ContentType.UNKNOWN
    content_url: str | None = None
    document_title: str | None = None
    document_type: str | None = None
    page_title: str | None = None
    has_iframe: bool = False
    iframe_src: str | None = None
    has_pdf_link: bool = False
    collection_id: str | None = None
    content_length: int | None = None
    last_modified: str | None = None
    pagination: Pagination = Field(default_factory=Pagination)
    errors: list[AnalysisError] = Field(default_factory=list)

    @property
    def is_pdf(self) -> bool:
        if self.content_type == ContentType.PDF:
            return True
        return bool(self.content_url and self.content_url.lower().endswith(".pdf"))

    @property
    def display_name(self) -> str:
        return self.archive_name or self.domain or self.url


class QuestionOption(BaseModel):
    value: str
    label: str


class Question(BaseModel):
    """A clarifying question put to the contributor."""

    id: str
    question: str
    options: list[QuestionOption] = Field(default_factory=list)
    type: str = "choice"
    required: bool = True

    @classmethod
    def choice(cls, id: str, question: str, options: list[tuple[str, str]], required: bool = True) -> Question:
        return cls(
            id=id,
            question=question,
            options=[QuestionOption(value=v, label=label) for v, label in options],
            required=required,
        )


def question_ids(questions: list[Question]) -> list[str]:
    return [q.id for q in questions]
