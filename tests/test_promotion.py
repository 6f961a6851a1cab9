"""Tests for promotion into the confirmed registry."""
from __future__ import annotations

import pytest

from contribution_pipeline.exceptions import NotFoundError, QualificationRejected, ValidationError
from contribution_pipeline.models import (
    ExtractedPerson,
    ExtractionJob,
    PromotionType,
    Session,
    SourceAnalysis,
    StagingRecord,
    StagingStatus,
)
from contribution_pipeline.promotion import (
    BAD_NAME,
    NOT_FEDERAL,
    NOT_OWNER,
    UNREADABLE_ROW,
    PromotionQualifier,
    is_federal_source,
    normalize_row,
    parse_name,
)

MSA_URL = "https://msa.maryland.gov/megafile/msa/speccol/sc2900/am812--3.html"


@pytest.fixture()
def qualifier(storage, config) -> PromotionQualifier:
    return PromotionQualifier(storage, config)


def owner(name: str, confidence: float, url: str = MSA_URL, **kwargs) -> ExtractedPerson:
    return ExtractedPerson(full_name=name, person_type="owner", confidence_score=confidence, source_url=url, **kwargs)


def seed_extraction(storage, url: str, rows: list[dict], final_url: str | None = None) -> tuple[str, str]:
    session = storage.insert_session(
        Session(url=url, source_metadata=SourceAnalysis(url=url, final_url=final_url or url))
    )
    job = storage.save_job(
        ExtractionJob(session_id=session.session_id, content_url=url, method="auto_ocr", parsed_rows=rows)
    )
    return session.session_id, job.extraction_id


class TestHelpers:
    def test_is_federal_source(self):
        assert is_federal_source(MSA_URL)
        assert is_federal_source("https://catalog.archives.gov/id/1")
        assert is_federal_source("https://www.fold3.com/image/1")
        assert is_federal_source("https://randomblog.com/x", "slave_schedule")
        assert not is_federal_source("https://randomblog.com/x")
        assert not is_federal_source(None)

    def test_gov_rule_is_a_substring_test(self):
        assert is_federal_source("https://example.com/about.government-records")

    def test_parse_name(self):
        assert parse_name("Smith, John") == ("John", "Smith")
        assert parse_name("John Q Smith") == ("John", "Q Smith")
        assert parse_name("Smith") == (None, "Smith")
        assert parse_name("  ") == (None, None)

    def test_normalize_row_shapes(self):
        person = normalize_row(
            {"columns": {"owner_name": "John Smith", "location": "Anne Arundel"}, "confidence": "0.93", "corrected": True},
            MSA_URL,
            0.85,
        )
        assert person.full_name == "John Smith"
        assert person.locations == ["Anne Arundel"]
        assert person.confidence_score == 0.93
        assert person.human_verified

        assert normalize_row({"full_name": "A B"}, None, 0.85).confidence_score == 0.85
        assert normalize_row({"full_name": "A B", "confidence": "high"}, None, 0.85).confidence_score == 0.0

    def test_normalize_row_odd_values(self):
        person = normalize_row({"full_name": "John Smith", "locations": "Anne Arundel"}, MSA_URL, 0.85)
        assert person.locations == ["Anne Arundel"]

        assert normalize_row({"full_name": 12345}, MSA_URL, 0.85).full_name == "12345"
        assert normalize_row({"columns": {"owner_name": {"first": "John"}}}, MSA_URL, 0.85).full_name is None
        assert normalize_row({"full_name": "A B", "locations": ["Talbot", None, 7]}, None, 0.85).locations == [
            "Talbot",
            "7",
        ]


class TestQualify:
    def test_gates_in_order(self, qualifier):
        enslaved = ExtractedPerson(full_name="Unknown", person_type="enslaved", confidence_score=0.99)
        assert qualifier.qualify(enslaved).reason == NOT_OWNER
        assert qualifier.qualify(owner("Unknown", 0.95)).reason == BAD_NAME
        assert qualifier.qualify(owner("J", 0.95)).reason == BAD_NAME
        assert qualifier.qualify(owner("12345", 0.95)).reason == BAD_NAME
        assert qualifier.qualify(owner("John Smith", 0.99, "https://randomblog.com/x")).reason == NOT_FEDERAL

    def test_confidence_thresholds(self, qualifier):
        low = qualifier.qualify(owner("John Smith", 0.85))
        assert not low.qualifies
        assert low.reason == "Confidence 85% below threshold"

        auto = qualifier.qualify(owner("John Smith", 0.90))
        assert auto.promotion_type == PromotionType.AUTO_HIGH_CONFIDENCE

        verified = qualifier.qualify(owner("John Smith", 0.75, human_verified=True))
        assert verified.promotion_type == PromotionType.HUMAN_VERIFIED

        too_low = qualifier.qualify(owner("John Smith", 0.65, human_verified=True))
        assert not too_low.qualifies

    def test_analysis_url_wins(self, qualifier):
        analysis = SourceAnalysis(url=MSA_URL, final_url=MSA_URL)
        person = owner("John Smith", 0.95, "https://randomblog.com/x")
        assert qualifier.qualify(person, analysis).qualifies

    def test_redirect_into_federal_archive(self, qualifier):
        analysis = SourceAnalysis(url="https://short.example.com/x", final_url=MSA_URL)
        person = owner("John Smith", 0.95, "https://short.example.com/x")
        assert qualifier.qualify(person, analysis).qualifies


class TestPromote:
    def test_created_then_merged(self, qualifier, storage):
        first = qualifier.promote(owner("John Smith", 0.95), extraction_id="x-1")
        second = qualifier.promote(owner("JOHN SMITH", 0.99), confirmation_channel="ocr_verified")

        assert first.action == "created"
        assert second.action == "updated"
        assert second.individual_id == first.individual_id
        assert storage.count_individuals("john smith") == 1

        stored = storage.get_individual(first.individual_id)
        assert stored.first_name == "John"
        assert stored.last_name == "Smith"
        assert "Extraction ID: x-1" in stored.notes
        assert "Additional source:" in stored.notes
        assert "[confirmed via ocr_verified]" in stored.notes
        assert len(storage.get_promotion_log(first.individual_id)) == 1

    def test_rejection_is_not_an_error(self, qualifier, storage):
        result = qualifier.promote(owner("John Smith", 0.99, "https://randomblog.com/x"))

        assert not result.success
        assert not result.error
        assert result.reason == NOT_FEDERAL
        assert storage.count_individuals() == 0

    def test_human_verified_is_marked_verified(self, qualifier, storage):
        result = qualifier.promote(owner("Mary Jones", 0.75, human_verified=True))

        assert result.promotion_type == PromotionType.HUMAN_VERIFIED
        assert storage.get_individual(result.individual_id).verified


class TestBatch:
    def test_channel_is_required(self, qualifier):
        with pytest.raises(ValidationError):
            qualifier.promote_from_extraction("s", "x", None)
        with pytest.raises(ValidationError) as excinfo:
            qualifier.promote_from_extraction("s", "x", "gut_feeling")
        assert "human_transcription" in str(excinfo.value)

    def test_unknown_session_or_job(self, qualifier, storage):
        with pytest.raises(NotFoundError):
            qualifier.promote_from_extraction("missing", "x", "ocr_verified")
        session_id, _ = seed_extraction(storage, MSA_URL, [])
        with pytest.raises(NotFoundError):
            qualifier.promote_from_extraction(session_id, "missing", "ocr_verified")

    def test_non_federal_source_promotes_nothing(self, qualifier, storage):
        rows = [{"columns": {"owner_name": "John Smith"}, "confidence": 0.99}]
        session_id, extraction_id = seed_extraction(storage, "https://randomblog.com/notes", rows)

        summary = qualifier.promote_from_extraction(session_id, extraction_id, "ocr_verified")

        assert not summary.federal_source
        assert (summary.promoted, summary.skipped, summary.errors, summary.evaluated) == (0, 0, 0, 0)

    def test_counts_and_staging_leads(self, qualifier, storage):
        rows = [
            {"columns": {"owner_name": "John Smith"}, "confidence": 0.95},
            {"columns": {"owner_name": "Illegible"}, "confidence": 0.95},
            {"columns": {"owner_name": "Ann Lee"}, "confidence": 0.5},
            {"columns": {"enslaved_name": "Sam"}, "confidence": 0.99},
        ]
        session_id, extraction_id = seed_extraction(storage, MSA_URL, rows)
        storage.save_staging_record(
            StagingRecord(lead_id="l-1", full_name="Henry Hall", person_type="slaveholder", source_url=MSA_URL, confidence_score=0.92)
        )
        storage.save_staging_record(
            StagingRecord(lead_id="l-2", full_name="Sam", person_type="enslaved", source_url=MSA_URL, confidence_score=0.99)
        )

        summary = qualifier.promote_from_extraction(session_id, extraction_id, "human_transcription")

        assert summary.federal_source
        assert summary.evaluated == 4
        assert summary.promoted == 2
        assert summary.skipped == 2
        assert summary.errors == 0
        assert {r.person for r in summary.results if r.success} == {"John Smith", "Henry Hall"}


    def test_odd_rows_do_not_stop_the_batch(self, qualifier, storage):
        rows = [
            {"type": "owner", "full_name": "John Smith", "confidence": 0.95},
            {"type": "owner", "full_name": 12345, "confidence": 0.95},
            {"columns": {"owner_name": {"first": "Ann"}}, "confidence": 0.95},
        ]
        session_id, extraction_id = seed_extraction(storage, MSA_URL, rows)

        summary = qualifier.promote_from_extraction(session_id, extraction_id, "human_transcription")

        assert (summary.evaluated, summary.promoted, summary.skipped, summary.errors) == (3, 1, 2, 0)
        assert storage.count_individuals("john smith") == 1

    def test_unreadable_row_is_counted_as_error(self, qualifier, storage, monkeypatch):
        from contribution_pipeline import promotion

        real = promotion.normalize_row

        def flaky(row, source_url, default_confidence):
            if row.get("full_name") == "Broken Row":
                raise ValueError("bad shape")
            return real(row, source_url, default_confidence)

        monkeypatch.setattr(promotion, "normalize_row", flaky)
        rows = [
            {"type": "owner", "full_name": "Broken Row", "confidence": 0.95},
            {"type": "owner", "full_name": "John Smith", "confidence": 0.95},
        ]
        session_id, extraction_id = seed_extraction(storage, MSA_URL, rows)

        summary = qualifier.promote_from_extraction(session_id, extraction_id, "ocr_verified")

        assert summary.errors == 1
        assert summary.promoted == 1
        assert summary.results[0].reason == UNREADABLE_ROW

    def test_redirected_source_is_gated_once(self, qualifier, storage):
        rows = [{"type": "owner", "full_name": "John Smith", "confidence": 0.95}]
        session_id, extraction_id = seed_extraction(storage, "https://short.example.com/x", rows, final_url=MSA_URL)

        summary = qualifier.promote_from_extraction(session_id, extraction_id, "ocr_verified")

        assert summary.federal_source
        assert summary.promoted == 1


class TestPromoteById:
    def test_missing_lead(self, qualifier):
        with pytest.raises(NotFoundError):
            qualifier.promote_by_id("nope")

    def test_rejected_lead(self, qualifier, storage):
        storage.save_staging_record(
            StagingRecord(lead_id="l-1", full_name="John Smith", person_type="owner", source_url="https://randomblog.com/x", confidence_score=0.99)
        )
        with pytest.raises(QualificationRejected) as excinfo:
            qualifier.promote_by_id("l-1")
        assert excinfo.value.reason == NOT_FEDERAL
        assert storage.get_staging_record("l-1").status == StagingStatus.PENDING

    def test_promotes_and_marks_lead(self, qualifier, storage):
        storage.save_staging_record(
            StagingRecord(lead_id="l-1", full_name="John Smith", person_type="owner", source_url=MSA_URL, confidence_score=0.72)
        )

        result = qualifier.promote_by_id("l-1", verified_by="reviewer")

        assert result.success
        assert result.promotion_type == PromotionType.HUMAN_VERIFIED
        lead = storage.get_staging_record("l-1")
        assert lead.status == StagingStatus.PROMOTED
        assert lead.reviewed_by == "reviewer"

    def test_stats(self, qualifier):
        qualifier.promote(owner("John Smith", 0.95))
        stats = qualifier.stats()
        assert stats.total_individuals == 1
        assert stats.promoted_last_24h == 1
