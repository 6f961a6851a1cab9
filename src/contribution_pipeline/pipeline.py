"""Contribution pipeline: the session stage machine.

A session walks a fixed stage order::

    url_analysis -> content_description -> structure_confirmation ->
    extraction_strategy -> extraction_in_progress -> human_review ->
    final_validation -> complete

Stages only move forward. The one exception is an explicit re-analysis,
which sends the session back to ``url_analysis`` and then on to
``content_description``. A session whose status is not ``in_progress``
accepts no further changes.

Every mutation runs under the session store's per-session lock and ends
in one durable write. URL fetches happen before the lock is taken.
"""
from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from .analyzer import URLAnalyzer, initial_questions, summarize
from .config import CONFIG, PipelineConfig
from .description import (
    answers_to_text,
    describe_reply,
    follow_up_questions,
    merge_structure,
    parse_description,
)
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .guidance import build_guidance, confirmation_message, extraction_options
from .logging import get_logger
from .models import (
    BatchPromotionSummary,
    Column,
    ColumnDataType,
    ContentStructure,
    CorrectionReceipt,
    ExtractionGuidance,
    ExtractionJob,
    ExtractionMethod,
    ExtractionOption,
    HandwritingType,
    HumanReading,
    JobStatus,
    JobStatusView,
    LayoutType,
    MessageRole,
    PromotionResult,
    PromotionStats,
    Question,
    ScanQuality,
    Session,
    SessionStatus,
    SessionSummary,
    SourceAnalysis,
    SourceType,
    Stage,
    StructureDelta,
)
from .models.analysis import question_ids
from .promotion import PromotionQualifier, is_federal_source
from .session_store import SessionStore
from .storage import ContributionStorage
from .tracker import AWAITING_INPUT, ExtractionBackend, ExtractionTracker, parse_method

logger = get_logger("contribution_pipeline.pipeline")


# =============================================================================
# Operation results
# =============================================================================


class AnalysisOutcome(BaseModel):
    session: Session
    analysis: SourceAnalysis
    message: str
    questions: list[Question] = Field(default_factory=list)
    next_stage: Stage


class DescriptionOutcome(BaseModel):
    session: Session
    delta: StructureDelta
    message: str
    questions: list[Question] = Field(default_factory=list)
    ready_to_confirm: bool = False
    next_stage: Stage


class ConfirmationOutcome(BaseModel):
    session: Session
    confirmed: bool
    message: str
    guidance: ExtractionGuidance | None = None
    options: list[ExtractionOption] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    next_stage: Stage


class ExtractionStart(BaseModel):
    session: Session
    job: ExtractionJob
    message: str
    next_stage: Stage


class ChatReply(BaseModel):
    stage: Stage
    message: str
    questions: list[Question] = Field(default_factory=list)
    options: list[ExtractionOption] = Field(default_factory=list)
    outcome: Any = None
    summary: SessionSummary


# =============================================================================
# Chat routing
# =============================================================================

CONFIRM_PATTERN = re.compile(r"\b(yes|correct|right|good|proceed|continue)\b", re.IGNORECASE)

# Checked in order; a later match overrides an earlier one.
METHOD_PATTERNS: tuple[tuple[re.Pattern[str], ExtractionMethod], ...] = (
    (re.compile(r"\b(auto|ocr|automatic)", re.IGNORECASE), ExtractionMethod.AUTO_OCR),
    (re.compile(r"\b(guided|manual|row by row)", re.IGNORECASE), ExtractionMethod.GUIDED_ENTRY),
    (re.compile(r"\b(sample|learn|example)", re.IGNORECASE), ExtractionMethod.SAMPLE_LEARN),
    (re.compile(r"\b(csv|spreadsheet|upload)", re.IGNORECASE), ExtractionMethod.CSV_UPLOAD),
)

METHOD_PROMPT = (
    "I didn't catch which method you'd like. Please choose:\n"
    "1. **Auto-OCR** - I run OCR, you correct mistakes\n"
    "2. **Guided Entry** - You type what you see row by row\n"
    "3. **Sample & Learn** - Give me examples, I learn the pattern\n"
    "4. **CSV Upload** - Upload a spreadsheet"
)


def detect_method(message: str) -> ExtractionMethod | None:
    method = None
    for pattern, candidate in METHOD_PATTERNS:
        if pattern.search(message):
            method = candidate
    return method


def is_confirmation(message: str) -> bool:
    return bool(CONFIRM_PATTERN.search(message))


# =============================================================================
# Structure corrections
# =============================================================================

_COLUMN_CORRECTION = re.compile(r"^column_(\d+)_(type|header)$")

_ENUM_CORRECTIONS = {
    "layout_type": LayoutType,
    "scan_quality": ScanQuality,
    "handwriting_type": HandwritingType,
}

_TRUE = {"true", "yes", "1"}
_FALSE = {"false", "no", "0"}


def _enum_value(enum: type, key: str, value: Any):
    try:
        return enum(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum)
        raise ValidationError(f"Invalid value {value!r} for {key}. Valid values: {valid}") from None


def _column_type(value: Any) -> ColumnDataType:
    if value == "other":
        return ColumnDataType.UNKNOWN
    return _enum_value(ColumnDataType, "column type", value)


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"Invalid value {value!r} for {key}; expected yes or no")


def apply_corrections(structure: ContentStructure, corrections: dict[str, Any]) -> ContentStructure:
    """Patch ``structure`` in place from ``column_<n>_type`` / ``column_<n>_header`` and top-level keys."""
    if not isinstance(corrections, dict):
        raise ValidationError("Corrections must be a mapping of field to value")
    for key, value in corrections.items():
        match = _COLUMN_CORRECTION.match(key)
        if match:
            position = int(match.group(1))
            if position < 1:
                raise ValidationError(f"Column positions start at 1, got {position}")
            column = structure.column_at(position)
            if column is None:
                column = Column(position=position)
                structure.columns.append(column)
                structure.columns.sort(key=lambda c: c.position)
            if match.group(2) == "type":
                column.data_type = _column_type(value)
            else:
                column.header_guess = str(value).strip() or None
            column.human_provided = True
        elif key in _ENUM_CORRECTIONS:
            setattr(structure, key, _enum_value(_ENUM_CORRECTIONS[key], key, value))
        elif key == "has_partial_view":
            structure.has_partial_view = _as_bool(key, value)
        else:
            raise ValidationError(f"Unknown structure correction {key!r}")
    return structure


def _extraction_message(job: ExtractionJob) -> str:
    if job.method == ExtractionMethod.MANUAL_TEXT:
        return (
            "Please paste the text from the document. "
            "I'll parse it using the column structure you confirmed."
        )
    if job.method == ExtractionMethod.SCREENSHOT_UPLOAD:
        return "Please upload screenshots of the document pages."
    if job.method == ExtractionMethod.CSV_UPLOAD:
        return "Please upload your CSV file. I'll map its columns to the structure you confirmed."
    return (
        f"Extraction started with **{job.method.value}**. "
        f"I'll let you know when results are ready.\n\nExtraction ID: {job.extraction_id}"
    )


# =============================================================================
# Pipeline
# =============================================================================


class ContributionPipeline:
    """Drives contribution sessions from URL to confirmed records.

    Example:
        storage = ContributionStorage("contributions.db")
        pipeline = ContributionPipeline(storage)
        outcome = await pipeline.start("https://msa.maryland.gov/...")
        pipeline.process_content_description(outcome.session.session_id, "It's a table ...")
    """

    def __init__(
        self,
        storage: ContributionStorage,
        analyzer: URLAnalyzer | None = None,
        backend: ExtractionBackend | None = None,
        config: PipelineConfig = CONFIG,
    ):
        self.storage = storage
        self.config = config
        self.analyzer = analyzer or URLAnalyzer(config=config)
        self.backend = backend
        self.sessions = SessionStore(storage)
        self.tracker = ExtractionTracker(storage, config)
        self.promotion = PromotionQualifier(storage, config)

    # =========================================================================
    # Stage guards
    # =========================================================================

    @staticmethod
    def _ensure_open(session: Session) -> None:
        if session.status != SessionStatus.IN_PROGRESS or session.current_stage.is_terminal:
            raise ValidationError(
                f"Session {session.session_id} is {session.status.value} "
                f"at {session.current_stage.value}; no further changes are allowed"
            )

    @staticmethod
    def _require_stage(session: Session, *allowed: Stage) -> None:
        if session.current_stage not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise ValidationError(
                f"Session is at {session.current_stage.value}; this step needs {expected}"
            )

    def _check_advance(self, session: Session, target: Stage) -> None:
        self._ensure_open(session)
        current = session.current_stage
        if target.order < current.order:
            raise ValidationError(f"Cannot move session back from {current.value} to {target.value}")
        structure = session.content_structure
        if (
            target.order > Stage.CONTENT_DESCRIPTION.order
            and structure is not None
            and structure.is_tabular
            and not structure.columns
        ):
            raise ValidationError("Describe at least one column of the table before continuing")

    def _advance(self, session: Session, target: Stage) -> None:
        self._check_advance(session, target)
        if session.current_stage != target:
            logger.info(
                "pipeline.stage_advanced",
                session_id=session.session_id,
                from_stage=session.current_stage.value,
                to_stage=target.value,
            )
        session.current_stage = target

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(self, url: str, contributor_id: str | None = None) -> Session:
        url = (url or "").strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Invalid URL format")
        session = Session(url=url, contributor_id=contributor_id)
        with self.sessions.locked(session.session_id):
            self.sessions.put(session)
        logger.info("pipeline.session_created", session_id=session.session_id, url=url)
        return session

    async def start(self, url: str, contributor_id: str | None = None) -> AnalysisOutcome:
        """Create a session and analyze its URL in one step."""
        session = self.create_session(url, contributor_id)
        return await self.analyze_url(session.session_id)

    def get_session(self, session_id: str) -> Session:
        return self.sessions.get(session_id)

    def list_sessions(self, limit: int = 50) -> list[SessionSummary]:
        return [SessionSummary.of(s) for s in self.storage.list_sessions(limit)]

    def session_summary(self, session: Session | str) -> SessionSummary:
        if isinstance(session, str):
            session = self.sessions.get(session)
        return SessionSummary.of(session)

    def abandon_session(self, session_id: str) -> Session:
        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            session.status = SessionStatus.ABANDONED
            session.add_message(MessageRole.SYSTEM, "Session abandoned.", stage=session.current_stage.value)
            self.sessions.put(session)
        logger.info("pipeline.session_abandoned", session_id=session_id, stage=session.current_stage.value)
        return session

    # =========================================================================
    # URL analysis
    # =========================================================================

    def _check_analysis(self, session: Session, reanalyze: bool) -> None:
        self._ensure_open(session)
        if not reanalyze and session.current_stage.order > Stage.CONTENT_DESCRIPTION.order:
            raise ValidationError(
                f"Session is already at {session.current_stage.value}; pass reanalyze=True to analyze again"
            )

    async def analyze_url(self, session_id: str, reanalyze: bool = False) -> AnalysisOutcome:
        session = self.sessions.get(session_id)
        self._check_analysis(session, reanalyze)

        analysis = await self.analyzer.analyze(session.url)

        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._check_analysis(session, reanalyze)
            if reanalyze and session.current_stage != Stage.URL_ANALYSIS:
                logger.info(
                    "pipeline.reanalysis",
                    session_id=session_id,
                    from_stage=session.current_stage.value,
                )
                session.current_stage = Stage.URL_ANALYSIS
            session.source_metadata = analysis
            message = summarize(analysis)
            questions = initial_questions(analysis)
            session.add_message(
                MessageRole.SYSTEM,
                message,
                stage=Stage.URL_ANALYSIS.value,
                questions=question_ids(questions),
            )
            self._advance(session, Stage.CONTENT_DESCRIPTION)
            self.sessions.put(session)

        logger.info(
            "pipeline.url_analyzed",
            session_id=session_id,
            source_type=analysis.source_type.value,
            content_type=analysis.content_type.value,
            errors=len(analysis.errors),
        )
        return AnalysisOutcome(
            session=session,
            analysis=analysis,
            message=message,
            questions=questions,
            next_stage=session.current_stage,
        )

    # =========================================================================
    # Description loop
    # =========================================================================

    def process_content_description(self, session_id: str, free_text: str) -> DescriptionOutcome:
        if not free_text or not free_text.strip():
            raise ValidationError("Description text is required")

        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            if session.current_stage.order > Stage.STRUCTURE_CONFIRMATION.order:
                raise ValidationError("The structure is already confirmed; describe changes as corrections")

            session.add_message(MessageRole.USER, free_text, stage=session.current_stage.value)
            delta = parse_description(free_text)
            structure = merge_structure(session.ensure_structure(), delta)
            questions = follow_up_questions(structure, self.config.max_unknown_column_questions)
            reply = describe_reply(delta, questions)
            session.add_message(MessageRole.ASSISTANT, reply, questions=question_ids(questions))

            ready = structure.has_enough_info()
            if ready:
                self._advance(session, Stage.STRUCTURE_CONFIRMATION)
            self.sessions.put(session)

        self._save_readings(session_id, delta.human_readings)
        logger.info(
            "pipeline.description_processed",
            session_id=session_id,
            columns=len(structure.columns),
            layout=structure.layout_type.value if structure.layout_type else None,
            ready=ready,
        )
        return DescriptionOutcome(
            session=session,
            delta=delta,
            message=reply,
            questions=questions,
            ready_to_confirm=ready,
            next_stage=session.current_stage,
        )

    def _save_readings(self, session_id: str, readings: list[HumanReading]) -> None:
        for reading in readings:
            try:
                self.storage.save_human_reading(session_id, reading)
            except PersistenceError as exc:
                logger.warning(
                    "pipeline.human_reading_not_saved",
                    session_id=session_id,
                    reading_type=reading.reading_type,
                    correlation_id=exc.correlation_id,
                )

    def describe_answers(self, session_id: str, answers: dict[str, Any]) -> DescriptionOutcome:
        """Structured answers to follow-up questions.

        ``source_type`` and ``document_type`` update the source analysis;
        everything else goes through the description parser as
        ``"key: value."`` text.
        """
        if not isinstance(answers, dict) or not answers:
            raise ValidationError("At least one answer is required")
        answers = dict(answers)
        source_answers = {k: answers.pop(k) for k in ("source_type", "document_type") if k in answers}
        if source_answers:
            self._record_source_answers(session_id, source_answers)

        text = answers_to_text(answers)
        if text:
            return self.process_content_description(session_id, text)

        session = self.sessions.get(session_id)
        structure = session.content_structure or ContentStructure()
        questions = follow_up_questions(structure, self.config.max_unknown_column_questions)
        return DescriptionOutcome(
            session=session,
            delta=StructureDelta(),
            message="Thanks - I've noted the source details.",
            questions=questions,
            ready_to_confirm=structure.has_enough_info(),
            next_stage=session.current_stage,
        )

    def _record_source_answers(self, session_id: str, source_answers: dict[str, Any]) -> None:
        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            analysis = session.source_metadata or SourceAnalysis(url=session.url, final_url=session.url)
            if source_answers.get("source_type"):
                analysis.source_type = _enum_value(SourceType, "source_type", source_answers["source_type"])
            if source_answers.get("document_type"):
                analysis.document_type = str(source_answers["document_type"]).strip()
            session.source_metadata = analysis
            session.add_message(MessageRole.USER, answers_to_text(source_answers), answers=source_answers)
            self.sessions.put(session)

    # =========================================================================
    # Confirmation and extraction
    # =========================================================================

    def confirm_structure(
        self,
        session_id: str,
        confirmed: bool = True,
        corrections: dict[str, Any] | None = None,
    ) -> ConfirmationOutcome:
        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            if session.current_stage.order > Stage.EXTRACTION_STRATEGY.order:
                raise ValidationError("Extraction has already started for this session")
            structure = session.content_structure
            if structure is None:
                raise ValidationError("Describe the document before confirming its structure")

            if corrections:
                apply_corrections(structure, corrections)
                session.add_message(
                    MessageRole.USER, "Corrected: " + answers_to_text(corrections), corrections=corrections
                )

            if not confirmed:
                questions = follow_up_questions(structure, self.config.max_unknown_column_questions)
                message = "No problem. Tell me what needs to change about the structure."
                session.add_message(MessageRole.ASSISTANT, message, questions=question_ids(questions))
                self.sessions.put(session)
                return ConfirmationOutcome(
                    session=session,
                    confirmed=False,
                    message=message,
                    questions=questions,
                    next_stage=session.current_stage,
                )

            self._check_advance(session, Stage.EXTRACTION_STRATEGY)
            previous = session.extraction_guidance
            guidance = build_guidance(structure, session.source_metadata)
            if previous is not None:
                guidance.sample_extractions = previous.sample_extractions
            session.extraction_guidance = guidance
            options = extraction_options(guidance, session.source_metadata)
            message = confirmation_message(structure, guidance)
            session.add_message(
                MessageRole.ASSISTANT,
                message,
                recommended_method=guidance.recommended_method.value,
                difficulty=guidance.expected_difficulty.value,
            )
            self._advance(session, Stage.EXTRACTION_STRATEGY)
            self.sessions.put(session)

        return ConfirmationOutcome(
            session=session,
            confirmed=True,
            message=message,
            guidance=guidance,
            options=options,
            next_stage=session.current_stage,
        )

    def extraction_options(self, session_id: str) -> list[ExtractionOption]:
        session = self.sessions.get(session_id)
        if session.extraction_guidance is None:
            raise ValidationError("Confirm the structure before choosing an extraction method")
        return extraction_options(session.extraction_guidance, session.source_metadata)

    def start_extraction(
        self,
        session_id: str,
        method: Any,
        options: dict[str, Any] | None = None,
    ) -> ExtractionStart:
        extraction_method = parse_method(method)

        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._check_advance(session, Stage.EXTRACTION_IN_PROGRESS)
            job = self.tracker.create_job(session, extraction_method, options)
            session.processing_instructions = {
                "extraction_id": job.extraction_id,
                "method": job.method.value,
                "options": job.options,
                "started_at": job.created_at.isoformat(),
            }
            message = _extraction_message(job)
            session.add_message(
                MessageRole.ASSISTANT,
                message,
                extraction_id=job.extraction_id,
                method=job.method.value,
            )
            self._advance(session, Stage.EXTRACTION_IN_PROGRESS)
            self.sessions.put(session)

        job = self._dispatch(job)
        return ExtractionStart(session=session, job=job, message=message, next_stage=session.current_stage)

    def _dispatch(self, job: ExtractionJob) -> ExtractionJob:
        if self.backend is None or job.method in AWAITING_INPUT:
            return job
        try:
            self.backend.submit(job)
        except Exception as exc:
            logger.error(
                "pipeline.backend_dispatch_failed",
                extraction_id=job.extraction_id,
                method=job.method.value,
                error=str(exc),
                exc_info=True,
            )
            return self.tracker.fail_job(job.extraction_id, exc)
        logger.info("pipeline.extraction_dispatched", extraction_id=job.extraction_id, method=job.method.value)
        return self.tracker.get_job(job.extraction_id)

    def submit_samples(self, session_id: str, samples: list[dict[str, Any]]) -> Session:
        if not isinstance(samples, list) or not samples:
            raise ValidationError("Samples array required")
        if not all(isinstance(s, dict) for s in samples):
            raise ValidationError("Each sample must map column names to values")

        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            if session.extraction_guidance is None:
                raise ValidationError("Confirm the structure before providing samples")
            session.extraction_guidance.sample_extractions.extend(samples)
            session.add_message(
                MessageRole.ASSISTANT,
                f"Received {len(samples)} sample extractions. I'll use these to learn the pattern.",
                sample_count=len(samples),
            )
            self.sessions.put(session)
        return session

    # =========================================================================
    # Extraction status and corrections
    # =========================================================================

    def _session_job(self, session_id: str, extraction_id: str) -> ExtractionJob:
        job = self.tracker.get_job(extraction_id)
        if job.session_id != session_id:
            raise NotFoundError("Extraction job", extraction_id)
        return job

    def get_extraction_status(
        self,
        session_id: str,
        extraction_id: str,
        include_rows: bool = False,
        debug: bool = False,
    ) -> JobStatusView:
        return self.tracker.get_status(extraction_id, session_id, include_rows=include_rows, debug=debug)

    def submit_transcription(self, session_id: str, extraction_id: str, text: str) -> ExtractionJob:
        """Complete a manual_text or csv_upload job from text the contributor typed or uploaded."""
        self._session_job(session_id, extraction_id)
        job = self.tracker.process_manual_text(extraction_id, text)
        logger.info(
            "pipeline.transcription_processed",
            session_id=session_id,
            extraction_id=extraction_id,
            rows=job.row_count,
        )
        return job

    def submit_corrections(
        self,
        extraction_id: str,
        corrections: Any,
        corrected_by: str | None = None,
    ) -> CorrectionReceipt:
        return self.tracker.submit_corrections(extraction_id, corrections, corrected_by=corrected_by)

    def corrected_rows(self, extraction_id: str) -> list[dict[str, Any]]:
        return self.tracker.corrected_rows(extraction_id)

    # =========================================================================
    # Review and completion
    # =========================================================================

    def begin_review(self, session_id: str) -> Session:
        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            self._require_stage(session, Stage.EXTRACTION_IN_PROGRESS, Stage.HUMAN_REVIEW)
            extraction_id = (session.processing_instructions or {}).get("extraction_id")
            if not extraction_id:
                raise ValidationError("No extraction has been started for this session")
            job = self.tracker.get_job(extraction_id)
            if job.status != JobStatus.COMPLETED:
                raise ValidationError(f"Extraction {extraction_id} is {job.status.value}, not completed")
            self._advance(session, Stage.HUMAN_REVIEW)
            session.add_message(
                MessageRole.SYSTEM,
                f"Extraction finished with {job.row_count} rows. Please review and correct them.",
                extraction_id=extraction_id,
            )
            self.sessions.put(session)
        return session

    def finalize(self, session_id: str) -> Session:
        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            self._require_stage(session, Stage.HUMAN_REVIEW, Stage.FINAL_VALIDATION)
            self._advance(session, Stage.FINAL_VALIDATION)
            self.sessions.put(session)
        return session

    def complete_session(self, session_id: str) -> Session:
        with self.sessions.locked(session_id):
            session = self.sessions.get(session_id)
            self._ensure_open(session)
            self._require_stage(session, Stage.FINAL_VALIDATION)
            self._advance(session, Stage.COMPLETE)
            session.status = SessionStatus.COMPLETE
            session.completed_at = datetime.now(UTC)
            session.add_message(MessageRole.SYSTEM, "Contribution complete. Thank you!")
            self.sessions.put(session)
        logger.info("pipeline.session_completed", session_id=session_id)
        return session

    # =========================================================================
    # Promotion
    # =========================================================================

    def promote_from_extraction(
        self,
        session_id: str,
        extraction_id: str,
        confirmation_channel: str | None,
    ) -> BatchPromotionSummary:
        return self.promotion.promote_from_extraction(session_id, extraction_id, confirmation_channel)

    def promote_by_id(self, lead_id: str, verified_by: str = "manual_review") -> PromotionResult:
        return self.promotion.promote_by_id(lead_id, verified_by)

    def is_federal_source(self, url: str | None, document_type: str | None = None) -> bool:
        return is_federal_source(url, document_type)

    def promotion_stats(self) -> PromotionStats:
        return self.promotion.stats()

    # =========================================================================
    # Conversational routing
    # =========================================================================

    async def chat(self, session_id: str, message: str) -> ChatReply:
        """Route one free-text message according to the session's stage."""
        if not message or not message.strip():
            raise ValidationError("Message required")
        session = self.sessions.get(session_id)
        stage = session.current_stage
        questions: list[Question] = []
        options: list[ExtractionOption] = []
        outcome: Any = None

        if stage == Stage.URL_ANALYSIS:
            outcome = await self.analyze_url(session_id)
            reply, questions = outcome.message, outcome.questions
        elif stage == Stage.CONTENT_DESCRIPTION:
            outcome = self.process_content_description(session_id, message)
            reply, questions = outcome.message, outcome.questions
        elif stage == Stage.STRUCTURE_CONFIRMATION:
            outcome = self.confirm_structure(session_id, confirmed=is_confirmation(message))
            reply, questions, options = outcome.message, outcome.questions, outcome.options
        elif stage == Stage.EXTRACTION_STRATEGY:
            method = detect_method(message)
            if method is not None:
                outcome = self.start_extraction(session_id, method)
                reply = outcome.message
            else:
                reply = METHOD_PROMPT
                if session.extraction_guidance is not None:
                    options = extraction_options(session.extraction_guidance, session.source_metadata)
        else:
            reply = f"Session is in stage: {stage.value}. Please use the appropriate operation for this stage."

        session = self.sessions.get(session_id)
        return ChatReply(
            stage=session.current_stage,
            message=reply,
            questions=questions,
            options=options,
            outcome=outcome,
            summary=SessionSummary.of(session),
        )
