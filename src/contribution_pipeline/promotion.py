"""Promotion of extracted slaveholder records into the confirmed registry.

A record qualifies when, in this order:

1. its role is an owner variant,
2. its name is present and not a placeholder,
3. its source is a government / federal source,
4. it is human verified with confidence >= 0.70, or has confidence >= 0.90.

The first failed check is the rejection reason. A qualifying record whose
name already exists in the registry (case-insensitive) is merged by
appending provenance to its notes; otherwise a new individual is created.
"""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError

from .config import CONFIG, PipelineConfig
from .exceptions import NotFoundError, PersistenceError, QualificationRejected, ValidationError
from .logging import get_logger
from .models import (
    OWNER_ROLES,
    BatchPromotionSummary,
    ConfirmedIndividual,
    ExtractedPerson,
    PromotionResult,
    PromotionStats,
    PromotionType,
    Qualification,
    SourceAnalysis,
)
from .storage import ContributionStorage

logger = get_logger("contribution_pipeline.promotion")

FEDERAL_DOMAINS = (
    "msa.maryland.gov",
    "archives.gov",
    "nara.gov",
    "loc.gov",
    "civilwardc.org",
    "fold3.com",
    "accessgenealogy.com",
    # State archives
    "virginiamemory.com",
    "digital.ncdcr.gov",
    "sos.ga.gov",
    "mdhistory.msa.maryland.gov",
)

FEDERAL_DOCUMENT_TYPES = frozenset(
    {
        "slave_schedule",
        "census",
        "compensation_petition",
        "emancipation_petition",
        "court_record",
        "tax_record",
        "slave_manifest",
        "military_record",
        "pension_record",
        "land_grant",
        "freedmens_bureau",
    }
)

PLACEHOLDER_NAMES = ("unknown", "illegible", "unclear", "???", "n/a", "none")

CONFIRMATORY_CHANNELS: dict[str, str] = {
    "human_transcription": "User manually transcribed names from document",
    "ocr_verified": "OCR extraction reviewed and corrected by human",
    "ocr_high_confidence": "OCR extraction with >= 95% confidence score",
    "page_metadata": "Structured data found on the hosting page",
    "cross_reference": "Name matches existing confirmed record",
}

NOT_OWNER = "Not an owner type"
BAD_NAME = "Name is illegible or unknown"
NOT_FEDERAL = "Not a federal/government source"
UNREADABLE_ROW = "Row could not be read as a person record"


def is_federal_source(url: str | None, document_type: str | None = None) -> bool:
    """Any ``.gov`` url, a known archive domain, or a federal document type.

    The ``.gov`` rule is a plain substring test on the whole url.
    """
    if url:
        lower_url = url.lower()
        if ".gov" in lower_url:
            return True
        if any(domain in lower_url for domain in FEDERAL_DOMAINS):
            return True
    if document_type and document_type.lower() in FEDERAL_DOCUMENT_TYPES:
        return True
    return False


def analysis_is_federal(analysis: SourceAnalysis, document_type: str | None = None) -> bool:
    """Federal if either the requested or the final (post-redirect) url is."""
    return is_federal_source(analysis.url, document_type) or is_federal_source(analysis.final_url, document_type)


def parse_name(full_name: str | None) -> tuple[str | None, str | None]:
    """Split a name into (first, last).

    "Smith, John" -> ("John", "Smith"); "John Q Smith" -> ("John", "Q Smith");
    "Smith" -> (None, "Smith").
    """
    if not full_name or not full_name.strip():
        return None, None
    name = full_name.strip()
    if "," in name:
        parts = [p.strip() for p in name.split(",")]
        return (parts[1] or None), parts[0]
    parts = name.split()
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], " ".join(parts[1:])


def _as_float(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def _as_locations(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        value = [value]
    return [text for text in (_as_text(v) for v in value) if text]


def normalize_row(
    row: dict[str, Any],
    source_url: str | None,
    default_confidence: float,
) -> ExtractedPerson:
    """Map any of the row shapes a backend produces onto ExtractedPerson."""
    columns = row.get("columns") if isinstance(row.get("columns"), dict) else {}
    locations = _as_locations(row.get("locations")) or _as_locations(columns.get("location"))
    raw_confidence = row.get("confidence_score")
    if raw_confidence in (None, ""):
        raw_confidence = row.get("confidence")
    return ExtractedPerson(
        full_name=_as_text(row.get("full_name")) or _as_text(columns.get("owner_name")) or _as_text(row.get("name")),
        person_type="owner",
        birth_year=_as_int(row.get("birth_year") or columns.get("birth_year")),
        death_year=_as_int(row.get("death_year") or columns.get("death_year")),
        locations=locations,
        source_url=source_url or _as_text(row.get("source_url")),
        document_type=_as_text(row.get("document_type")),
        confidence_score=_as_float(raw_confidence, default_confidence),
        human_verified=bool(row.get("human_verified") or row.get("corrected")),
        lead_id=_as_text(row.get("lead_id")),
    )


def is_owner_row(row: dict[str, Any]) -> bool:
    role = str(row.get("person_type") or row.get("type") or "").lower()
    columns = row.get("columns") if isinstance(row.get("columns"), dict) else {}
    return role in OWNER_ROLES or bool(columns.get("owner_name"))


def _tally(summary: BatchPromotionSummary, result: PromotionResult) -> None:
    summary.results.append(result)
    if result.success:
        summary.promoted += 1
    elif result.error:
        summary.errors += 1
    else:
        summary.skipped += 1


class PromotionQualifier:
    """Gates and performs promotion into the confirmed registry."""

    def __init__(self, storage: ContributionStorage, config: PipelineConfig = CONFIG):
        self.storage = storage
        self.config = config

    # =========================================================================
    # Qualification
    # =========================================================================

    def qualify(self, person: ExtractedPerson, analysis: SourceAnalysis | None = None) -> Qualification:
        if not person.is_owner_type:
            return Qualification(qualifies=False, reason=NOT_OWNER)

        name = (person.full_name or "").strip()
        if (
            len(name) < 2
            or not any(c.isalpha() for c in name)
            or any(bad in name.lower() for bad in PLACEHOLDER_NAMES)
        ):
            return Qualification(qualifies=False, reason=BAD_NAME)

        document_type = (analysis.document_type if analysis else None) or person.document_type
        if analysis is not None:
            federal = analysis_is_federal(analysis, document_type)
        else:
            federal = is_federal_source(person.source_url, document_type)
        if not federal:
            return Qualification(qualifies=False, reason=NOT_FEDERAL)

        confidence = person.confidence_score or 0.0
        if person.human_verified and confidence >= self.config.human_verified_threshold:
            return Qualification(
                qualifies=True,
                reason="Human-verified federal document owner",
                confidence=confidence,
                promotion_type=PromotionType.HUMAN_VERIFIED,
            )
        if confidence >= self.config.auto_promote_threshold:
            return Qualification(
                qualifies=True,
                reason="High-confidence federal document owner",
                confidence=confidence,
                promotion_type=PromotionType.AUTO_HIGH_CONFIDENCE,
            )
        return Qualification(
            qualifies=False,
            reason=f"Confidence {confidence * 100:.0f}% below threshold",
            confidence=confidence,
        )

    # =========================================================================
    # Single record
    # =========================================================================

    def promote(
        self,
        person: ExtractedPerson,
        analysis: SourceAnalysis | None = None,
        extraction_id: str | None = None,
        confirmation_channel: str | None = None,
    ) -> PromotionResult:
        qualification = self.qualify(person, analysis)
        if not qualification.qualifies:
            logger.info("promotion.skipped", person=person.full_name, reason=qualification.reason)
            return PromotionResult(
                success=False,
                person=person.full_name,
                reason=qualification.reason,
                confidence=qualification.confidence,
            )

        name = person.full_name.strip()
        source_url = (analysis.url if analysis else None) or person.source_url
        document_type = (analysis.document_type if analysis else None) or person.document_type
        now = datetime.now(UTC)
        first, last = parse_name(name)

        notes = [
            "Auto-promoted from federal document.",
            f"Source: {source_url}",
            f"Document Type: {document_type or 'federal_record'}",
            f"Promotion: {qualification.promotion_type.value}",
            f"Confidence: {qualification.confidence * 100:.0f}%",
            f"Extraction ID: {extraction_id or 'N/A'}",
        ]
        merge_note = f"Additional source: {source_url} ({now.isoformat()})"
        if confirmation_channel:
            notes.append(f"Confirmation channel: {confirmation_channel}")
            merge_note += f" [confirmed via {confirmation_channel}]"

        candidate = ConfirmedIndividual(
            individual_id=f"owner_{uuid4().hex[:12]}",
            full_name=name,
            first_name=first,
            last_name=last,
            birth_year=person.birth_year,
            death_year=person.death_year,
            location=", ".join(person.locations) or None,
            notes="\n".join(notes),
            source_type="primary",
            source_url=source_url,
            confidence_score=qualification.confidence,
            verified=qualification.promotion_type == PromotionType.HUMAN_VERIFIED,
            created_at=now,
            updated_at=now,
        )

        try:
            action, individual = self.storage.create_or_merge_individual(candidate, merge_note)
        except PersistenceError as exc:
            logger.error(
                "promotion.write_failed",
                person=name,
                correlation_id=exc.correlation_id,
            )
            return PromotionResult(
                success=False,
                person=name,
                reason=exc.public_message,
                error=True,
                correlation_id=exc.correlation_id,
            )

        if action == "created":
            self._log_promotion(individual, person, qualification, confirmation_channel, source_url)
        logger.info(
            f"promotion.{action}",
            person=name,
            individual_id=individual.individual_id,
            promotion_type=qualification.promotion_type.value,
        )
        return PromotionResult(
            success=True,
            person=name,
            action=action,
            individual_id=individual.individual_id,
            reason=qualification.reason,
            confidence=qualification.confidence,
            promotion_type=qualification.promotion_type,
        )

    def _log_promotion(
        self,
        individual: ConfirmedIndividual,
        person: ExtractedPerson,
        qualification: Qualification,
        confirmation_channel: str | None,
        source_url: str | None,
    ) -> None:
        try:
            self.storage.log_promotion(
                individual_id=individual.individual_id,
                full_name=individual.full_name,
                promotion_type=qualification.promotion_type.value,
                reason=qualification.reason,
                confidence=qualification.confidence,
                lead_id=person.lead_id,
                confirmation_channel=confirmation_channel,
                source_url=source_url,
            )
        except PersistenceError as exc:
            logger.warning(
                "promotion.audit_log_failed",
                individual_id=individual.individual_id,
                correlation_id=exc.correlation_id,
            )

    # =========================================================================
    # Batch and manual promotion
    # =========================================================================

    def promote_from_extraction(
        self,
        session_id: str,
        extraction_id: str,
        confirmation_channel: str | None,
    ) -> BatchPromotionSummary:
        """Promote owner rows of one extraction job. Rows succeed or fail independently."""
        if not confirmation_channel:
            raise ValidationError(
                "confirmation_channel is required. Valid channels: " + ", ".join(CONFIRMATORY_CHANNELS)
            )
        if confirmation_channel not in CONFIRMATORY_CHANNELS:
            raise ValidationError(
                f"Unknown confirmation channel {confirmation_channel!r}. "
                "Valid channels: " + ", ".join(CONFIRMATORY_CHANNELS)
            )

        session = self.storage.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        job = self.storage.get_job(extraction_id)
        if job is None or job.session_id != session_id:
            raise NotFoundError("Extraction job", extraction_id)

        analysis = session.source_metadata or SourceAnalysis(url=session.url, final_url=session.url)
        summary = BatchPromotionSummary(confirmation_channel=confirmation_channel)
        document_type = analysis.document_type
        summary.federal_source = analysis_is_federal(analysis, document_type)
        if not summary.federal_source:
            logger.info("promotion.batch_not_federal", extraction_id=extraction_id, url=analysis.url)
            return summary

        rows = [row for row in (job.parsed_rows or []) if isinstance(row, dict) and is_owner_row(row)]
        leads = self.storage.list_staging_records(analysis.url, OWNER_ROLES)
        summary.evaluated = len(rows) + len(leads)

        for index, row in enumerate(rows):
            try:
                person = normalize_row(row, analysis.url, self.config.default_row_confidence)
            except (ModelValidationError, TypeError, ValueError) as exc:
                logger.warning(
                    "promotion.row_unreadable",
                    extraction_id=extraction_id,
                    row=index,
                    error=str(exc),
                )
                _tally(summary, PromotionResult(success=False, reason=UNREADABLE_ROW, error=True))
                continue
            _tally(summary, self.promote(person, analysis, extraction_id, confirmation_channel))

        for lead in leads:
            _tally(summary, self.promote(lead.to_extracted(), analysis, extraction_id, confirmation_channel))

        logger.info(
            "promotion.batch_complete",
            extraction_id=extraction_id,
            promoted=summary.promoted,
            skipped=summary.skipped,
            errors=summary.errors,
            confirmation_channel=confirmation_channel,
        )
        return summary

    def promote_by_id(self, lead_id: str, verified_by: str = "manual_review") -> PromotionResult:
        """Promote one staging lead as human verified.

        Raises:
            NotFoundError: the lead does not exist.
            QualificationRejected: the lead fails a qualification gate.
        """
        lead = self.storage.get_staging_record(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)

        person = lead.to_extracted(human_verified=True)
        result = self.promote(person, confirmation_channel="manual_review")
        if result.error:
            raise PersistenceError("promote_by_id", correlation_id=result.correlation_id)
        if not result.success:
            raise QualificationRejected(reason=result.reason, confidence=result.confidence, person=lead.full_name)

        self.storage.mark_staging_promoted(lead_id, verified_by)
        logger.info("promotion.lead_promoted", lead_id=lead_id, verified_by=verified_by)
        return result

    def stats(self) -> PromotionStats:
        return self.storage.promotion_stats(since=datetime.now(UTC) - timedelta(hours=24))
