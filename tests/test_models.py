"""Tests for Pydantic models."""

from contribution_pipeline.models import (
    STAGE_ORDER,
    Column,
    ContentStructure,
    Correction,
    ExtractionMethod,
    JobStatus,
    LayoutType,
    MessageRole,
    Question,
    Session,
    SessionSummary,
    SourceAnalysis,
    Stage,
    StructureDelta,
)


class TestStage:
    """Tests for the stage order."""

    def test_order_follows_declaration(self):
        assert STAGE_ORDER[0] == Stage.URL_ANALYSIS
        assert STAGE_ORDER[-1] == Stage.COMPLETE
        assert Stage.STRUCTURE_CONFIRMATION.order == 2
        assert Stage.EXTRACTION_STRATEGY.order > Stage.CONTENT_DESCRIPTION.order

    def test_only_complete_is_terminal(self):
        assert [s for s in Stage if s.is_terminal] == [Stage.COMPLETE]

    def test_stage_is_still_a_string(self):
        assert Stage("human_review") == "human_review"
        assert "review" in Stage.HUMAN_REVIEW


class TestSession:
    """Tests for sessions and their summaries."""

    def test_defaults(self):
        session = Session(url="https://x.org/a")
        assert session.current_stage == Stage.URL_ANALYSIS
        assert session.version == 0
        assert session.content_structure is None

    def test_add_message(self):
        session = Session(url="https://x.org/a")
        entry = session.add_message(MessageRole.USER, "hello", stage="url_analysis")

        assert session.conversation_history == [entry]
        assert entry.metadata == {"stage": "url_analysis"}

    def test_ensure_structure_is_idempotent(self):
        session = Session(url="https://x.org/a")
        first = session.ensure_structure()
        assert session.ensure_structure() is first

    def test_summary_prefers_archive_name(self):
        session = Session(
            url="https://msa.maryland.gov/a",
            current_stage=Stage.HUMAN_REVIEW,
            source_metadata=SourceAnalysis(
                url="https://msa.maryland.gov/a",
                final_url="https://msa.maryland.gov/a",
                domain="msa.maryland.gov",
                archive_name="Maryland State Archives",
                document_title="Slave Statistics",
            ),
        )

        summary = SessionSummary.of(session)

        assert summary.stage_index == 5
        assert summary.total_stages == 8
        assert summary.source == "Maryland State Archives"
        assert summary.document_title == "Slave Statistics"

    def test_json_round_trip(self):
        session = Session(url="https://x.org/a")
        session.add_message(MessageRole.ASSISTANT, "hi")
        restored = Session.model_validate_json(session.model_dump_json())
        assert restored == session


class TestStructure:
    """Tests for content structures."""

    def test_enough_info(self):
        assert not ContentStructure().has_enough_info()
        assert ContentStructure(layout_type=LayoutType.PROSE).has_enough_info()
        assert not ContentStructure(layout_type=LayoutType.TABLE).has_enough_info()
        assert ContentStructure(layout_type=LayoutType.TABLE, columns=[Column(position=1)]).has_enough_info()

    def test_column_lookup(self):
        structure = ContentStructure(columns=[Column(position=2, data_type="age")])
        assert structure.column_at(2).data_type == "age"
        assert structure.column_at(1) is None

    def test_empty_delta(self):
        assert StructureDelta().is_empty()
        assert not StructureDelta(layout_type=LayoutType.LIST).is_empty()


class TestExtraction:
    def test_method_values(self):
        assert len(ExtractionMethod.values()) == 7

    def test_terminal_statuses(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PENDING.is_terminal

    def test_correction_key(self):
        correction = Correction(extraction_id="x-1", row_index=2, field_name="age", corrected_value="41")
        assert correction.key == ("x-1", 2, "age")

    def test_question_choice(self):
        question = Question.choice("q", "Pick one", [("a", "A"), ("b", "B")], required=False)
        assert [o.value for o in question.options] == ["a", "b"]
        assert not question.required
