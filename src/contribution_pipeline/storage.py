"""SQLite storage for the contribution pipeline.

Persists sessions, extraction jobs, corrections, the confirmed registry,
staging leads, the promotion audit log and human readings. Nested
documents (conversation history, content structure, guidance, analysis,
parsed rows) are stored as JSON produced by pydantic and restored with
``model_validate``.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator
from uuid import uuid4

from .config import CONFIG
from .exceptions import PersistenceError
from .logging import get_logger
from .models import (
    ConfirmedIndividual,
    ConversationMessage,
    Correction,
    ExtractionJob,
    HumanReading,
    PromotionStats,
    Session,
    SourceAnalysis,
    StagingRecord,
)
from .models.guidance import ExtractionGuidance
from .models.structure import ContentStructure

logger = get_logger("contribution_pipeline.storage")


# =============================================================================
# Schema Definitions
# =============================================================================


SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Contribution sessions
CREATE TABLE IF NOT EXISTS contribution_sessions (
    session_id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    contributor_id TEXT,
    current_stage TEXT NOT NULL,
    conversation_history TEXT,  -- JSON array
    source_metadata TEXT,  -- JSON
    content_structure TEXT,  -- JSON
    extraction_guidance TEXT,  -- JSON
    processing_instructions TEXT,  -- JSON
    status TEXT NOT NULL DEFAULT 'in_progress',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    version INTEGER NOT NULL DEFAULT 0
);

-- Extraction jobs
CREATE TABLE IF NOT EXISTS extraction_jobs (
    extraction_id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    content_url TEXT NOT NULL,
    content_type TEXT,
    method TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    status_message TEXT,
    progress INTEGER DEFAULT 0,
    options TEXT,  -- JSON
    raw_text TEXT,
    parsed_rows TEXT,  -- JSON array
    row_count INTEGER DEFAULT 0,
    avg_confidence REAL,
    human_corrections INTEGER DEFAULT 0,
    illegible_count INTEGER DEFAULT 0,
    error_message TEXT,
    suggested_fallback TEXT,
    debug_log TEXT,  -- JSON
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES contribution_sessions(session_id)
);
CREATE INDEX IF NOT EXISTS idx_extraction_jobs_session ON extraction_jobs(session_id);

-- Human corrections (append-only)
CREATE TABLE IF NOT EXISTS extraction_corrections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    extraction_id TEXT NOT NULL,
    row_index INTEGER NOT NULL,
    field_name TEXT NOT NULL,
    original_value TEXT,
    corrected_value TEXT,
    corrected_by TEXT NOT NULL DEFAULT 'anonymous',
    corrected_at TEXT NOT NULL,
    FOREIGN KEY (extraction_id) REFERENCES extraction_jobs(extraction_id)
);
CREATE INDEX IF NOT EXISTS idx_corrections_extraction ON extraction_corrections(extraction_id);

-- Confirmed registry
CREATE TABLE IF NOT EXISTS individuals (
    individual_id TEXT PRIMARY KEY,
    full_name TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT,
    birth_year INTEGER,
    death_year INTEGER,
    location TEXT,
    notes TEXT,
    source_type TEXT NOT NULL DEFAULT 'primary',
    source_url TEXT,
    confidence_score REAL DEFAULT 0.0,
    verified INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_individuals_name ON individuals(lower(full_name));

-- Unconfirmed leads
CREATE TABLE IF NOT EXISTS unconfirmed_persons (
    lead_id TEXT PRIMARY KEY,
    full_name TEXT NOT NULL,
    person_type TEXT,
    source_url TEXT,
    document_type TEXT,
    confidence_score REAL DEFAULT 0.0,
    status TEXT NOT NULL DEFAULT 'pending',
    reviewed_by TEXT,
    reviewed_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_unconfirmed_source ON unconfirmed_persons(source_url);

-- Promotion audit log
CREATE TABLE IF NOT EXISTS promotion_log (
    id TEXT PRIMARY KEY,
    individual_id TEXT NOT NULL,
    lead_id TEXT,
    full_name TEXT NOT NULL,
    promotion_type TEXT NOT NULL,
    reason TEXT,
    confidence REAL,
    confirmation_channel TEXT,
    source_url TEXT,
    promoted_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_promotion_log_time ON promotion_log(promoted_at);

-- Exact text read by contributors
CREATE TABLE IF NOT EXISTS human_readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    reading_type TEXT NOT NULL,
    exact_text TEXT NOT NULL,  -- JSON
    confidence TEXT,
    note TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_human_readings_session ON human_readings(session_id);
"""

DEBUG_LOG_MARKER = {"error": "unparseable debug log"}


# =============================================================================
# Storage Class
# =============================================================================


class ContributionStorage:
    """SQLite storage for contribution sessions and the confirmed registry."""

    def __init__(self, db_path: Path | str = ":memory:", timeout: float | None = None):
        """Initialize storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory
            timeout: Busy timeout in seconds; defaults to CONFIG.db_timeout
        """
        self.db_path = str(db_path)
        self.timeout = CONFIG.db_timeout if timeout is None else timeout
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = sqlite3.connect(
                self.db_path, timeout=self.timeout, check_same_thread=False
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for database transactions.

        ``sqlite3.Error`` is rolled back and re-raised as ``PersistenceError``;
        anything else is rolled back and propagated unchanged.
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                error = PersistenceError(type(exc).__name__)
                logger.error(
                    "storage.transaction_failed",
                    correlation_id=error.correlation_id,
                    error=str(exc),
                    exc_type=type(exc).__name__,
                )
                raise error from exc
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def _initialize_schema(self) -> None:
        """Initialize database schema."""
        with self.transaction() as cursor:
            cursor.executescript(SCHEMA_SQL)
            cursor.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
            row = cursor.fetchone()
            if row is None:
                cursor.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    # =========================================================================
    # Serialization Helpers
    # =========================================================================

    @staticmethod
    def _serialize_datetime(dt: datetime | None) -> str | None:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(s: str | None) -> datetime | None:
        if not s:
            return None
        return datetime.fromisoformat(s)

    @staticmethod
    def _serialize_json(obj: Any) -> str | None:
        if obj is None:
            return None
        return json.dumps(obj, default=str)

    @staticmethod
    def _deserialize_json(s: str | None) -> Any:
        if not s:
            return None
        return json.loads(s)

    @staticmethod
    def _serialize_model(model: Any) -> str | None:
        if model is None:
            return None
        return model.model_dump_json()

    # =========================================================================
    # Sessions
    # =========================================================================

    def insert_session(self, session: Session) -> Session:
        """Write a new session row. Sets ``version`` to 1."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO contribution_sessions (
                    session_id, url, contributor_id, current_stage,
                    conversation_history, source_metadata, content_structure,
                    extraction_guidance, processing_instructions, status,
                    created_at, updated_at, completed_at, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                """,
                (
                    session.session_id,
                    session.url,
                    session.contributor_id,
                    session.current_stage.value,
                    self._serialize_history(session),
                    self._serialize_model(session.source_metadata),
                    self._serialize_model(session.content_structure),
                    self._serialize_model(session.extraction_guidance),
                    self._serialize_json(session.processing_instructions),
                    session.status.value,
                    self._serialize_datetime(session.created_at),
                    self._serialize_datetime(session.updated_at),
                    self._serialize_datetime(session.completed_at),
                ),
            )
        session.version = 1
        return session

    def update_session(self, session: Session) -> Session:
        """Write a session back if nobody else wrote it since it was read.

        Raises:
            PersistenceError: with ``conflict=True`` when the stored version
                no longer matches ``session.version``.
        """
        session.updated_at = datetime.now(UTC)
        with self.transaction() as cursor:
            cursor.execute(
                """
                UPDATE contribution_sessions SET
                    url = ?, contributor_id = ?, current_stage = ?,
                    conversation_history = ?, source_metadata = ?, content_structure = ?,
                    extraction_guidance = ?, processing_instructions = ?, status = ?,
                    updated_at = ?, completed_at = ?, version = version + 1
                WHERE session_id = ? AND version = ?
                """,
                (
                    session.url,
                    session.contributor_id,
                    session.current_stage.value,
                    self._serialize_history(session),
                    self._serialize_model(session.source_metadata),
                    self._serialize_model(session.content_structure),
                    self._serialize_model(session.extraction_guidance),
                    self._serialize_json(session.processing_instructions),
                    session.status.value,
                    self._serialize_datetime(session.updated_at),
                    self._serialize_datetime(session.completed_at),
                    session.session_id,
                    session.version,
                ),
            )
            if cursor.rowcount == 0:
                error = PersistenceError("update_session", conflict=True)
                logger.warning(
                    "storage.version_conflict",
                    session_id=session.session_id,
                    expected_version=session.version,
                    correlation_id=error.correlation_id,
                )
                raise error
        session.version += 1
        return session

    def get_session(self, session_id: str) -> Session | None:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM contribution_sessions WHERE session_id = ?", (session_id,)
            )
            row = cursor.fetchone()
            if not row:
                return None
            return self._row_to_session(row)

    def list_sessions(self, limit: int = 50) -> list[Session]:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM contribution_sessions ORDER BY updated_at DESC LIMIT ?", (limit,)
            )
            return [self._row_to_session(row) for row in cursor.fetchall()]

    def _serialize_history(self, session: Session) -> str:
        return json.dumps([m.model_dump(mode="json") for m in session.conversation_history])

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        history = self._deserialize_json(row["conversation_history"]) or []
        source = self._deserialize_json(row["source_metadata"])
        structure = self._deserialize_json(row["content_structure"])
        guidance = self._deserialize_json(row["extraction_guidance"])
        return Session(
            session_id=row["session_id"],
            url=row["url"],
            contributor_id=row["contributor_id"],
            current_stage=row["current_stage"],
            conversation_history=[ConversationMessage.model_validate(m) for m in history],
            source_metadata=SourceAnalysis.model_validate(source) if source else None,
            content_structure=ContentStructure.model_validate(structure) if structure else None,
            extraction_guidance=ExtractionGuidance.model_validate(guidance) if guidance else None,
            processing_instructions=self._deserialize_json(row["processing_instructions"]),
            status=row["status"],
            created_at=self._deserialize_datetime(row["created_at"]),
            updated_at=self._deserialize_datetime(row["updated_at"]),
            completed_at=self._deserialize_datetime(row["completed_at"]),
            version=row["version"],
        )

    # =========================================================================
    # Extraction Jobs
    # =========================================================================

    def save_job(self, job: ExtractionJob) -> ExtractionJob:
        """Insert or fully rewrite an extraction job row.

        ``human_corrections`` is owned by :meth:`append_correction` and is
        never overwritten here.
        """
        job.updated_at = datetime.now(UTC)
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO extraction_jobs (
                    extraction_id, session_id, content_url, content_type, method,
                    status, status_message, progress, options, raw_text, parsed_rows,
                    row_count, avg_confidence, human_corrections, illegible_count,
                    error_message, suggested_fallback, debug_log,
                    created_at, started_at, completed_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(extraction_id) DO UPDATE SET
                    status = excluded.status,
                    status_message = excluded.status_message,
                    progress = excluded.progress,
                    options = excluded.options,
                    raw_text = excluded.raw_text,
                    parsed_rows = excluded.parsed_rows,
                    row_count = excluded.row_count,
                    avg_confidence = excluded.avg_confidence,
                    illegible_count = excluded.illegible_count,
                    error_message = excluded.error_message,
                    suggested_fallback = excluded.suggested_fallback,
                    debug_log = excluded.debug_log,
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    updated_at = excluded.updated_at
                """,
                (
                    job.extraction_id,
                    job.session_id,
                    job.content_url,
                    job.content_type,
                    job.method.value,
                    job.status.value,
                    job.status_message,
                    job.progress,
                    self._serialize_json(job.options),
                    job.raw_text,
                    self._serialize_json(job.parsed_rows),
                    job.row_count,
                    job.avg_confidence,
                    job.human_corrections,
                    job.illegible_count,
                    job.error_message,
                    job.suggested_fallback,
                    self._serialize_json(job.debug_log),
                    self._serialize_datetime(job.created_at),
                    self._serialize_datetime(job.started_at),
                    self._serialize_datetime(job.completed_at),
                    self._serialize_datetime(job.updated_at),
                ),
            )
        return job

    def get_job(self, extraction_id: str) -> ExtractionJob | None:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM extraction_jobs WHERE extraction_id = ?", (extraction_id,)
            )
            row = cursor.fetchone()
            if not row:
                return None
            return self._row_to_job(row)

    def list_jobs(self, session_id: str) -> list[ExtractionJob]:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM extraction_jobs WHERE session_id = ? ORDER BY created_at",
                (session_id,),
            )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def _decode_rows(self, extraction_id: str, raw: str | None) -> list[dict[str, Any]] | None:
        try:
            rows = self._deserialize_json(raw)
        except ValueError:
            logger.warning("storage.malformed_rows", extraction_id=extraction_id)
            return None
        if rows is not None and not (isinstance(rows, list) and all(isinstance(r, dict) for r in rows)):
            logger.warning("storage.malformed_rows", extraction_id=extraction_id)
            return None
        return rows

    def _decode_debug(self, extraction_id: str, raw: str | None) -> Any:
        try:
            return self._deserialize_json(raw)
        except ValueError:
            logger.warning("storage.malformed_debug_log", extraction_id=extraction_id)
            return dict(DEBUG_LOG_MARKER)

    def _row_to_job(self, row: sqlite3.Row) -> ExtractionJob:
        extraction_id = row["extraction_id"]
        try:
            options = self._deserialize_json(row["options"]) or {}
        except ValueError:
            options = {}
        return ExtractionJob(
            extraction_id=extraction_id,
            session_id=row["session_id"],
            content_url=row["content_url"],
            content_type=row["content_type"],
            method=row["method"],
            status=row["status"],
            status_message=row["status_message"],
            progress=row["progress"] or 0,
            options=options,
            raw_text=row["raw_text"],
            parsed_rows=self._decode_rows(extraction_id, row["parsed_rows"]),
            row_count=row["row_count"] or 0,
            avg_confidence=row["avg_confidence"],
            human_corrections=row["human_corrections"] or 0,
            illegible_count=row["illegible_count"] or 0,
            error_message=row["error_message"],
            suggested_fallback=row["suggested_fallback"],
            debug_log=self._decode_debug(extraction_id, row["debug_log"]),
            created_at=self._deserialize_datetime(row["created_at"]),
            started_at=self._deserialize_datetime(row["started_at"]),
            completed_at=self._deserialize_datetime(row["completed_at"]),
            updated_at=self._deserialize_datetime(row["updated_at"]),
        )

    # =========================================================================
    # Corrections
    # =========================================================================

    def append_correction(self, correction: Correction) -> None:
        """Append one correction and bump the job's counter atomically."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO extraction_corrections (
                    extraction_id, row_index, field_name, original_value,
                    corrected_value, corrected_by, corrected_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    correction.extraction_id,
                    correction.row_index,
                    correction.field_name,
                    correction.original_value,
                    correction.corrected_value,
                    correction.corrected_by,
                    self._serialize_datetime(correction.corrected_at),
                ),
            )
            cursor.execute(
                """
                UPDATE extraction_jobs
                SET human_corrections = human_corrections + 1, updated_at = ?
                WHERE extraction_id = ?
                """,
                (datetime.now(UTC).isoformat(), correction.extraction_id),
            )

    def list_corrections(self, extraction_id: str) -> list[Correction]:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM extraction_corrections WHERE extraction_id = ? ORDER BY id",
                (extraction_id,),
            )
            return [
                Correction(
                    extraction_id=row["extraction_id"],
                    row_index=row["row_index"],
                    field_name=row["field_name"],
                    original_value=row["original_value"],
                    corrected_value=row["corrected_value"],
                    corrected_by=row["corrected_by"],
                    corrected_at=self._deserialize_datetime(row["corrected_at"]),
                )
                for row in cursor.fetchall()
            ]

    # =========================================================================
    # Confirmed Registry
    # =========================================================================

    def find_individual_by_name(self, full_name: str) -> ConfirmedIndividual | None:
        """Case-insensitive exact match on full name."""
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM individuals WHERE lower(full_name) = lower(?)", (full_name,)
            )
            row = cursor.fetchone()
            return self._row_to_individual(row) if row else None

    def get_individual(self, individual_id: str) -> ConfirmedIndividual | None:
        with self.transaction() as cursor:
            cursor.execute("SELECT * FROM individuals WHERE individual_id = ?", (individual_id,))
            row = cursor.fetchone()
            return self._row_to_individual(row) if row else None

    def create_or_merge_individual(
        self, candidate: ConfirmedIndividual, merge_note: str
    ) -> tuple[str, ConfirmedIndividual]:
        """Insert ``candidate`` or append ``merge_note`` to the existing namesake.

        Lookup and write happen in one transaction. Returns the action
        (``"created"`` or ``"updated"``) and the stored record.
        """
        now = datetime.now(UTC)
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM individuals WHERE lower(full_name) = lower(?)",
                (candidate.full_name,),
            )
            row = cursor.fetchone()
            if row:
                existing = self._row_to_individual(row)
                notes = f"{existing.notes}\n{merge_note}" if existing.notes else merge_note
                cursor.execute(
                    "UPDATE individuals SET notes = ?, updated_at = ? WHERE individual_id = ?",
                    (notes, now.isoformat(), existing.individual_id),
                )
                existing.notes = notes
                existing.updated_at = now
                return "updated", existing

            cursor.execute(
                """
                INSERT INTO individuals (
                    individual_id, full_name, first_name, last_name, birth_year,
                    death_year, location, notes, source_type, source_url,
                    confidence_score, verified, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    candidate.individual_id,
                    candidate.full_name,
                    candidate.first_name,
                    candidate.last_name,
                    candidate.birth_year,
                    candidate.death_year,
                    candidate.location,
                    candidate.notes,
                    candidate.source_type,
                    candidate.source_url,
                    candidate.confidence_score,
                    int(candidate.verified),
                    self._serialize_datetime(candidate.created_at),
                    self._serialize_datetime(candidate.updated_at),
                ),
            )
            return "created", candidate

    def count_individuals(self, full_name: str | None = None) -> int:
        with self.transaction() as cursor:
            if full_name is None:
                cursor.execute("SELECT COUNT(*) FROM individuals")
            else:
                cursor.execute(
                    "SELECT COUNT(*) FROM individuals WHERE lower(full_name) = lower(?)",
                    (full_name,),
                )
            return cursor.fetchone()[0]

    def _row_to_individual(self, row: sqlite3.Row) -> ConfirmedIndividual:
        return ConfirmedIndividual(
            individual_id=row["individual_id"],
            full_name=row["full_name"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            birth_year=row["birth_year"],
            death_year=row["death_year"],
            location=row["location"],
            notes=row["notes"] or "",
            source_type=row["source_type"],
            source_url=row["source_url"],
            confidence_score=row["confidence_score"] or 0.0,
            verified=bool(row["verified"]),
            created_at=self._deserialize_datetime(row["created_at"]),
            updated_at=self._deserialize_datetime(row["updated_at"]),
        )

    # =========================================================================
    # Staging Records
    # =========================================================================

    def save_staging_record(self, record: StagingRecord) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO unconfirmed_persons (
                    lead_id, full_name, person_type, source_url, document_type,
                    confidence_score, status, reviewed_by, reviewed_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.lead_id,
                    record.full_name,
                    record.person_type,
                    record.source_url,
                    record.document_type,
                    record.confidence_score,
                    record.status.value,
                    record.reviewed_by,
                    self._serialize_datetime(record.reviewed_at),
                    self._serialize_datetime(record.created_at),
                ),
            )

    def get_staging_record(self, lead_id: str) -> StagingRecord | None:
        with self.transaction() as cursor:
            cursor.execute("SELECT * FROM unconfirmed_persons WHERE lead_id = ?", (lead_id,))
            row = cursor.fetchone()
            return self._row_to_staging(row) if row else None

    def list_staging_records(
        self, source_url: str, person_types: frozenset[str] | None = None
    ) -> list[StagingRecord]:
        """Pending leads for one source url, optionally filtered by role."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM unconfirmed_persons
                WHERE source_url = ? AND status = 'pending'
                ORDER BY created_at
                """,
                (source_url,),
            )
            records = [self._row_to_staging(row) for row in cursor.fetchall()]
        if person_types is None:
            return records
        return [r for r in records if (r.person_type or "").lower() in person_types]

    def mark_staging_promoted(self, lead_id: str, reviewed_by: str) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                """
                UPDATE unconfirmed_persons
                SET status = 'promoted', reviewed_by = ?, reviewed_at = ?
                WHERE lead_id = ?
                """,
                (reviewed_by, datetime.now(UTC).isoformat(), lead_id),
            )

    def _row_to_staging(self, row: sqlite3.Row) -> StagingRecord:
        return StagingRecord(
            lead_id=row["lead_id"],
            full_name=row["full_name"],
            person_type=row["person_type"] or "unknown",
            source_url=row["source_url"],
            document_type=row["document_type"],
            confidence_score=row["confidence_score"] or 0.0,
            status=row["status"],
            reviewed_by=row["reviewed_by"],
            reviewed_at=self._deserialize_datetime(row["reviewed_at"]),
            created_at=self._deserialize_datetime(row["created_at"]),
        )

    # =========================================================================
    # Promotion Log
    # =========================================================================

    def log_promotion(
        self,
        individual_id: str,
        full_name: str,
        promotion_type: str,
        reason: str,
        confidence: float | None,
        lead_id: str | None = None,
        confirmation_channel: str | None = None,
        source_url: str | None = None,
    ) -> str:
        entry_id = str(uuid4())
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO promotion_log (
                    id, individual_id, lead_id, full_name, promotion_type, reason,
                    confidence, confirmation_channel, source_url, promoted_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    individual_id,
                    lead_id,
                    full_name,
                    promotion_type,
                    reason,
                    confidence,
                    confirmation_channel,
                    source_url,
                    datetime.now(UTC).isoformat(),
                ),
            )
        return entry_id

    def get_promotion_log(self, individual_id: str) -> list[dict[str, Any]]:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM promotion_log WHERE individual_id = ? ORDER BY promoted_at",
                (individual_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def promotion_stats(self, since: datetime) -> PromotionStats:
        with self.transaction() as cursor:
            cursor.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN source_type = 'primary' THEN 1 ELSE 0 END) AS primary_count,
                    SUM(CASE WHEN verified = 1 THEN 1 ELSE 0 END) AS verified_count
                FROM individuals
                """
            )
            row = cursor.fetchone()
            cursor.execute(
                "SELECT COUNT(*) FROM promotion_log WHERE promoted_at >= ?",
                (since.isoformat(),),
            )
            recent = cursor.fetchone()[0]
        return PromotionStats(
            total_individuals=row["total"] or 0,
            primary_source_count=row["primary_count"] or 0,
            verified_count=row["verified_count"] or 0,
            promoted_last_24h=recent or 0,
        )

    # =========================================================================
    # Human Readings
    # =========================================================================

    def save_human_reading(self, session_id: str, reading: HumanReading) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO human_readings (
                    session_id, reading_type, exact_text, confidence, note, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    reading.reading_type,
                    json.dumps(reading.exact_text),
                    reading.confidence,
                    reading.note,
                    datetime.now(UTC).isoformat(),
                ),
            )

    def list_human_readings(self, session_id: str) -> list[HumanReading]:
        with self.transaction() as cursor:
            cursor.execute(
                "SELECT * FROM human_readings WHERE session_id = ? ORDER BY id", (session_id,)
            )
            return [
                HumanReading(
                    reading_type=row["reading_type"],
                    exact_text=json.loads(row["exact_text"]),
                    confidence=row["confidence"] or "human_provided",
                    note=row["note"],
                )
                for row in cursor.fetchall()
            ]
