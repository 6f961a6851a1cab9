"""End-to-end tests for the contribution session stage machine."""
from __future__ import annotations

import pytest
from helpers import BLOG_URL, MARYLAND_PAGE, MARYLAND_URL, TABLE_DESCRIPTION, ForbiddenBackend, make_transport

from contribution_pipeline.exceptions import NotFoundError, PersistenceError, ValidationError
from contribution_pipeline.models import (
    ColumnDataType,
    ExtractionMethod,
    JobStatus,
    MessageRole,
    RecommendedMethod,
    ScanQuality,
    SessionStatus,
    SourceType,
    Stage,
)
from contribution_pipeline.pipeline import (
    METHOD_PROMPT,
    ContributionPipeline,
    detect_method,
    is_confirmation,
)

ROWS = [
    {"row_index": 0, "columns": {"owner_name": "John Smith", "date": "1864"}, "confidence": 0.95},
    {"row_index": 1, "columns": {"owner_name": "Mary Jones", "date": "1865"}, "confidence": 0.7},
]


async def confirmed_session(pipeline: ContributionPipeline, url: str = MARYLAND_URL) -> str:
    outcome = await pipeline.start(url)
    session_id = outcome.session.session_id
    pipeline.process_content_description(session_id, TABLE_DESCRIPTION)
    pipeline.confirm_structure(session_id)
    return session_id


class TestSessions:
    @pytest.mark.parametrize("url", ["", "not a url", "ftp://files.example.org/a.pdf", "https://"])
    def test_invalid_url(self, pipeline, url):
        with pytest.raises(ValidationError, match="Invalid URL format"):
            pipeline.create_session(url)

    def test_create_persists(self, pipeline, storage):
        session = pipeline.create_session(MARYLAND_URL, contributor_id="volunteer-7")

        assert session.current_stage == Stage.URL_ANALYSIS
        assert session.version == 1
        assert storage.get_session(session.session_id).contributor_id == "volunteer-7"

    def test_unknown_session(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.get_session("missing")

    def test_summary_and_listing(self, pipeline):
        session = pipeline.create_session(BLOG_URL)

        summary = pipeline.session_summary(session.session_id)

        assert summary.stage_index == 0
        assert summary.total_stages == 8
        assert [s.session_id for s in pipeline.list_sessions()] == [session.session_id]

    def test_abandon_closes_session(self, pipeline):
        session = pipeline.create_session(MARYLAND_URL)

        abandoned = pipeline.abandon_session(session.session_id)

        assert abandoned.status == SessionStatus.ABANDONED
        with pytest.raises(ValidationError):
            pipeline.process_content_description(session.session_id, "It's a table")
        with pytest.raises(ValidationError):
            pipeline.abandon_session(session.session_id)


class TestAnalysis:
    @pytest.mark.asyncio
    async def test_start_analyzes_and_advances(self, pipeline):
        outcome = await pipeline.start(MARYLAND_URL)

        assert outcome.next_stage == Stage.CONTENT_DESCRIPTION
        assert outcome.analysis.source_type == SourceType.PRIMARY
        assert outcome.session.source_metadata.archive_name == "Maryland State Archives"
        history = outcome.session.conversation_history
        assert history[-1].role == MessageRole.SYSTEM
        assert history[-1].metadata["stage"] == "url_analysis"

    @pytest.mark.asyncio
    async def test_fetch_failure_still_advances(self, pipeline):
        outcome = await pipeline.start("https://example.org/missing")

        assert outcome.next_stage == Stage.CONTENT_DESCRIPTION
        assert outcome.analysis.errors
        assert "**Issues:**" in outcome.message

    @pytest.mark.asyncio
    async def test_going_back_needs_reanalyze(self, pipeline):
        session_id = await confirmed_session(pipeline)

        with pytest.raises(ValidationError):
            await pipeline.analyze_url(session_id)

        outcome = await pipeline.analyze_url(session_id, reanalyze=True)

        assert outcome.next_stage == Stage.CONTENT_DESCRIPTION
        assert outcome.session.content_structure.columns


class TestDescription:
    @pytest.mark.asyncio
    async def test_table_with_columns_is_ready(self, pipeline):
        session_id = (await pipeline.start(MARYLAND_URL)).session.session_id

        outcome = pipeline.process_content_description(session_id, TABLE_DESCRIPTION)

        assert outcome.ready_to_confirm
        assert outcome.next_stage == Stage.STRUCTURE_CONFIRMATION
        columns = outcome.session.content_structure.columns
        assert [c.data_type for c in columns] == [ColumnDataType.OWNER_NAME, ColumnDataType.DATE]
        roles = [m.role for m in outcome.session.conversation_history[-2:]]
        assert roles == [MessageRole.USER, MessageRole.ASSISTANT]

    @pytest.mark.asyncio
    async def test_table_without_columns_waits(self, pipeline):
        session_id = (await pipeline.start(MARYLAND_URL)).session.session_id

        outcome = pipeline.process_content_description(session_id, "It's a table")

        assert not outcome.ready_to_confirm
        assert outcome.next_stage == Stage.CONTENT_DESCRIPTION
        assert [q.id for q in outcome.questions][0] == "column_count"
        with pytest.raises(ValidationError):
            pipeline.confirm_structure(session_id)

    def test_blank_description(self, pipeline):
        session = pipeline.create_session(MARYLAND_URL)
        with pytest.raises(ValidationError):
            pipeline.process_content_description(session.session_id, "   ")

    @pytest.mark.asyncio
    async def test_human_readings_are_saved(self, pipeline, storage):
        session_id = (await pipeline.start(MARYLAND_URL)).session.session_id

        pipeline.process_content_description(session_id, 'Headers are "Name of Owner" and "Date"')

        readings = storage.list_human_readings(session_id)
        assert readings[0].exact_text == ["Name of Owner", "Date"]

    @pytest.mark.asyncio
    async def test_structured_answers(self, pipeline):
        session_id = (await pipeline.start(BLOG_URL)).session.session_id

        noted = pipeline.describe_answers(session_id, {"source_type": "primary", "document_type": "census"})
        assert noted.message == "Thanks - I've noted the source details."
        assert noted.session.source_metadata.source_type == SourceType.PRIMARY
        assert noted.session.source_metadata.document_type == "census"

        outcome = pipeline.describe_answers(session_id, {"layout_type": "table", "column_count": 2, "column_1_type": "owner_name"})
        assert outcome.next_stage == Stage.STRUCTURE_CONFIRMATION
        assert [c.position for c in outcome.session.content_structure.columns] == [1, 2]

    @pytest.mark.asyncio
    async def test_bad_source_answer(self, pipeline):
        session_id = (await pipeline.start(BLOG_URL)).session.session_id
        with pytest.raises(ValidationError):
            pipeline.describe_answers(session_id, {"source_type": "gossip"})
        with pytest.raises(ValidationError):
            pipeline.describe_answers(session_id, {})


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_confirm_builds_guidance(self, pipeline):
        outcome = await pipeline.start(MARYLAND_URL)
        session_id = outcome.session.session_id
        pipeline.process_content_description(session_id, TABLE_DESCRIPTION)

        confirmed = pipeline.confirm_structure(session_id)

        assert confirmed.next_stage == Stage.EXTRACTION_STRATEGY
        assert confirmed.guidance.contains_owners
        assert confirmed.guidance.recommended_method == RecommendedMethod.AUTO_OCR
        options = {o.id: o for o in confirmed.options}
        assert len(options) == 7
        assert options["browser_based_ocr"].recommended
        assert not options["auto_ocr"].available
        assert pipeline.extraction_options(session_id) == confirmed.options

    @pytest.mark.asyncio
    async def test_corrections_are_applied(self, pipeline):
        outcome = await pipeline.start(MARYLAND_URL)
        session_id = outcome.session.session_id
        pipeline.process_content_description(session_id, TABLE_DESCRIPTION)

        confirmed = pipeline.confirm_structure(
            session_id,
            corrections={"column_2_type": "age", "column_3_header": "Remarks", "scan_quality": "poor", "handwriting_type": "cursive"},
        )

        structure = confirmed.session.content_structure
        assert structure.columns[1].data_type == ColumnDataType.AGE
        assert structure.columns[2].header_guess == "Remarks"
        assert structure.scan_quality == ScanQuality.POOR
        assert confirmed.guidance.recommended_method == RecommendedMethod.GUIDED_ENTRY

    @pytest.mark.asyncio
    async def test_invalid_corrections_change_nothing(self, pipeline):
        outcome = await pipeline.start(MARYLAND_URL)
        session_id = outcome.session.session_id
        pipeline.process_content_description(session_id, TABLE_DESCRIPTION)

        with pytest.raises(ValidationError):
            pipeline.confirm_structure(session_id, corrections={"column_1_type": "banana"})
        with pytest.raises(ValidationError):
            pipeline.confirm_structure(session_id, corrections={"favourite_colour": "blue"})

        session = pipeline.get_session(session_id)
        assert session.current_stage == Stage.STRUCTURE_CONFIRMATION
        assert session.content_structure.columns[0].data_type == ColumnDataType.OWNER_NAME

    @pytest.mark.asyncio
    async def test_rejection_stays_put(self, pipeline):
        outcome = await pipeline.start(MARYLAND_URL)
        session_id = outcome.session.session_id
        pipeline.process_content_description(session_id, TABLE_DESCRIPTION)

        rejected = pipeline.confirm_structure(session_id, confirmed=False)

        assert not rejected.confirmed
        assert rejected.next_stage == Stage.STRUCTURE_CONFIRMATION
        assert rejected.session.extraction_guidance is None

    @pytest.mark.asyncio
    async def test_samples_survive_reconfirmation(self, pipeline):
        session_id = await confirmed_session(pipeline)

        with pytest.raises(ValidationError, match="Samples array required"):
            pipeline.submit_samples(session_id, [])
        pipeline.submit_samples(session_id, [{"owner_name": "John Smith"}])
        reconfirmed = pipeline.confirm_structure(session_id)

        assert reconfirmed.guidance.sample_extractions == [{"owner_name": "John Smith"}]

    def test_samples_need_guidance(self, pipeline):
        session = pipeline.create_session(MARYLAND_URL)
        with pytest.raises(ValidationError):
            pipeline.submit_samples(session.session_id, [{"a": 1}])


class TestExtraction:
    @pytest.mark.asyncio
    async def test_invalid_method(self, pipeline):
        session_id = await confirmed_session(pipeline)

        with pytest.raises(ValidationError) as excinfo:
            pipeline.start_extraction(session_id, "telepathy")

        for method in ExtractionMethod.values():
            assert method in str(excinfo.value)
        assert pipeline.get_session(session_id).current_stage == Stage.EXTRACTION_STRATEGY

    @pytest.mark.asyncio
    async def test_auto_ocr_is_dispatched(self, pipeline, backend):
        session_id = await confirmed_session(pipeline)

        started = pipeline.start_extraction(session_id, "auto_ocr", {"dpi": 300})

        assert started.job.status == JobStatus.PENDING
        assert started.next_stage == Stage.EXTRACTION_IN_PROGRESS
        assert started.job.content_url.endswith("am812--3.pdf")
        assert [job.extraction_id for job in backend.jobs] == [started.job.extraction_id]
        instructions = started.session.processing_instructions
        assert instructions["extraction_id"] == started.job.extraction_id
        assert instructions["options"] == {"dpi": 300}

    @pytest.mark.asyncio
    async def test_backend_failure_marks_job_failed(self, storage, config, make_analyzer):
        analyzer = make_analyzer(make_transport({MARYLAND_URL: (200, MARYLAND_PAGE)}))
        pipeline = ContributionPipeline(storage, analyzer=analyzer, backend=ForbiddenBackend(), config=config)
        session_id = await confirmed_session(pipeline)

        started = pipeline.start_extraction(session_id, "auto_ocr")

        assert started.job.status == JobStatus.FAILED
        assert started.job.suggested_fallback == "browser_based_ocr"
        status = pipeline.get_extraction_status(session_id, started.job.extraction_id)
        assert status.error == "Download failed: 403 Forbidden"

    @pytest.mark.asyncio
    async def test_manual_text_waits_for_the_contributor(self, pipeline, backend):
        session_id = await confirmed_session(pipeline)

        started = pipeline.start_extraction(session_id, "manual_text")

        assert backend.jobs == []
        assert started.job.status_message == "Waiting for user to provide text"
        assert "paste the text" in started.message

        job = pipeline.submit_transcription(session_id, started.job.extraction_id, "John Smith    1864\nMary Jones    1865")
        assert job.status == JobStatus.COMPLETED
        assert job.parsed_rows[1]["columns"] == {"owner_name": "Mary Jones", "date": "1865"}

        with pytest.raises(NotFoundError):
            pipeline.submit_transcription("other-session", started.job.extraction_id, "x")

    @pytest.mark.asyncio
    async def test_status_and_corrections(self, pipeline):
        session_id = await confirmed_session(pipeline)
        job = pipeline.start_extraction(session_id, "auto_ocr").job
        pipeline.tracker.complete_job(job.extraction_id, ROWS)

        receipt = pipeline.submit_corrections(
            job.extraction_id, [{"row_index": 1, "field": "owner_name", "corrected_value": "Mary Jonas"}]
        )
        status = pipeline.get_extraction_status(session_id, job.extraction_id, include_rows=True)

        assert receipt.applied == 1
        assert status.human_corrections == 1
        assert status.parsed_rows == ROWS
        assert pipeline.corrected_rows(job.extraction_id)[1]["columns"]["owner_name"] == "Mary Jonas"
        with pytest.raises(NotFoundError):
            pipeline.submit_corrections("missing", [])


class TestCompletion:
    @pytest.mark.asyncio
    async def test_full_flow(self, pipeline, storage):
        session_id = await confirmed_session(pipeline)
        job = pipeline.start_extraction(session_id, "auto_ocr").job

        with pytest.raises(ValidationError):
            pipeline.begin_review(session_id)
        with pytest.raises(ValidationError):
            pipeline.complete_session(session_id)

        pipeline.tracker.complete_job(job.extraction_id, ROWS)
        assert pipeline.begin_review(session_id).current_stage == Stage.HUMAN_REVIEW
        assert pipeline.finalize(session_id).current_stage == Stage.FINAL_VALIDATION

        summary = pipeline.promote_from_extraction(session_id, job.extraction_id, "ocr_verified")
        assert summary.promoted == 1
        assert summary.skipped == 1

        done = pipeline.complete_session(session_id)
        assert done.status == SessionStatus.COMPLETE
        assert done.completed_at is not None
        assert storage.get_session(session_id).current_stage == Stage.COMPLETE

        with pytest.raises(ValidationError):
            pipeline.process_content_description(session_id, "one more thing")
        with pytest.raises(ValidationError):
            pipeline.abandon_session(session_id)
        with pytest.raises(ValidationError):
            await pipeline.analyze_url(session_id, reanalyze=True)

    def test_promotion_passthroughs(self, pipeline):
        assert pipeline.is_federal_source(MARYLAND_URL)
        assert not pipeline.is_federal_source(BLOG_URL)
        assert pipeline.promotion_stats().total_individuals == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_stale_writer_gets_a_conflict(self, pipeline, storage, config):
        other = ContributionPipeline(storage, analyzer=pipeline.analyzer, config=config)
        session_id = (await pipeline.start(MARYLAND_URL)).session.session_id
        other.get_session(session_id)

        pipeline.process_content_description(session_id, "It's a table")

        with pytest.raises(PersistenceError) as excinfo:
            other.process_content_description(session_id, "The scan is faded")
        assert excinfo.value.conflict

        # the stale copy was evicted, so a retry sees the latest version
        outcome = other.process_content_description(session_id, "The scan is faded")
        assert outcome.session.content_structure.layout_type.value == "table"
        assert outcome.session.content_structure.scan_quality == ScanQuality.FAIR


class TestChat:
    def test_helpers(self):
        assert detect_method("auto OCR please") == ExtractionMethod.AUTO_OCR
        assert detect_method("ocr, or actually guided entry") == ExtractionMethod.GUIDED_ENTRY
        assert detect_method("I'll upload a spreadsheet") == ExtractionMethod.CSV_UPLOAD
        assert detect_method("whatever you think") is None
        assert is_confirmation("Yes, that's right")
        assert not is_confirmation("that is incorrect")

    @pytest.mark.asyncio
    async def test_routes_by_stage(self, pipeline, backend):
        session_id = pipeline.create_session(MARYLAND_URL).session_id

        reply = await pipeline.chat(session_id, "hello")
        assert reply.stage == Stage.CONTENT_DESCRIPTION

        reply = await pipeline.chat(session_id, TABLE_DESCRIPTION)
        assert reply.stage == Stage.STRUCTURE_CONFIRMATION

        reply = await pipeline.chat(session_id, "that is incorrect")
        assert reply.stage == Stage.STRUCTURE_CONFIRMATION

        reply = await pipeline.chat(session_id, "yes, proceed")
        assert reply.stage == Stage.EXTRACTION_STRATEGY
        assert len(reply.options) == 7

        reply = await pipeline.chat(session_id, "hmm, not sure")
        assert reply.message == METHOD_PROMPT
        assert reply.stage == Stage.EXTRACTION_STRATEGY

        reply = await pipeline.chat(session_id, "let's learn from a sample")
        assert reply.stage == Stage.EXTRACTION_IN_PROGRESS
        assert reply.outcome.job.method == ExtractionMethod.SAMPLE_LEARN
        assert len(backend.jobs) == 1

        reply = await pipeline.chat(session_id, "done yet?")
        assert reply.message.startswith("Session is in stage: extraction_in_progress")
        assert reply.summary.stage_index == Stage.EXTRACTION_IN_PROGRESS.order

    @pytest.mark.asyncio
    async def test_empty_message(self, pipeline):
        session_id = pipeline.create_session(MARYLAND_URL).session_id
        with pytest.raises(ValidationError, match="Message required"):
            await pipeline.chat(session_id, " ")
