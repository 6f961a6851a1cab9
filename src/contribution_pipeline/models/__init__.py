"""Pydantic models for the contribution pipeline."""

from .analysis import (
    AnalysisError,
    ContentAccess,
    ContentType,
    Pagination,
    Question,
    QuestionOption,
    SourceAnalysis,
    SourceType,
)
from .extraction import (
    Correction,
    CorrectionReceipt,
    ExtractionJob,
    ExtractionMethod,
    JobStatus,
    JobStatusView,
)
from .guidance import Difficulty, ExtractionGuidance, ExtractionOption, RecommendedMethod
from .registry import (
    OWNER_ROLES,
    BatchPromotionSummary,
    ConfirmedIndividual,
    ExtractedPerson,
    PersonRole,
    PromotionResult,
    PromotionStats,
    PromotionType,
    Qualification,
    StagingRecord,
    StagingStatus,
)
from .session import (
    STAGE_ORDER,
    ConversationMessage,
    MessageRole,
    Session,
    SessionStatus,
    SessionSummary,
    Stage,
)
from .structure import (
    Column,
    ColumnDataType,
    ContentStructure,
    HandwritingType,
    HumanReading,
    LayoutType,
    ScanQuality,
    StructureDelta,
)

__all__ = [
    "AnalysisError",
    "BatchPromotionSummary",
    "Column",
    "ColumnDataType",
    "ConfirmedIndividual",
    "ContentAccess",
    "ContentStructure",
    "ContentType",
    "ConversationMessage",
    "Correction",
    "CorrectionReceipt",
    "Difficulty",
    "ExtractedPerson",
    "ExtractionGuidance",
    "ExtractionJob",
    "ExtractionMethod",
    "ExtractionOption",
    "HandwritingType",
    "HumanReading",
    "JobStatus",
    "JobStatusView",
    "LayoutType",
    "MessageRole",
    "OWNER_ROLES",
    "Pagination",
    "PersonRole",
    "PromotionResult",
    "PromotionStats",
    "PromotionType",
    "Qualification",
    "Question",
    "QuestionOption",
    "RecommendedMethod",
    "STAGE_ORDER",
    "ScanQuality",
    "Session",
    "SessionStatus",
    "SessionSummary",
    "SourceAnalysis",
    "SourceType",
    "StagingRecord",
    "StagingStatus",
    "Stage",
    "StructureDelta",
]
