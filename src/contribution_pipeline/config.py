from __future__ import annotations

import os
from dataclasses import dataclass


def _f(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _s(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


@dataclass(frozen=True)
class PipelineConfig:
    db_path: str = _s("CONTRIB_DB_PATH", "./data/contributions.db")
    log_level: str = _s("CONTRIB_LOG_LEVEL", "INFO")

    # Outbound fetches (seconds)
    fetch_timeout: float = _f("CONTRIB_FETCH_TIMEOUT", 30.0)
    head_timeout: float = _f("CONTRIB_HEAD_TIMEOUT", 5.0)
    fetch_attempts: int = _i("CONTRIB_FETCH_ATTEMPTS", 3)
    max_redirects: int = _i("CONTRIB_MAX_REDIRECTS", 5)
    user_agent: str = _s(
        "CONTRIB_USER_AGENT", "Reparations Research Bot (Historical Genealogy Research)"
    )

    # SQLite busy timeout (seconds)
    db_timeout: float = _f("CONTRIB_DB_TIMEOUT", 30.0)

    # Promotion gates
    auto_promote_threshold: float = _f("CONTRIB_AUTO_PROMOTE_THRESHOLD", 0.90)
    human_verified_threshold: float = _f("CONTRIB_HUMAN_VERIFIED_THRESHOLD", 0.70)
    default_row_confidence: float = _f("CONTRIB_DEFAULT_ROW_CONFIDENCE", 0.85)

    # Follow-up questions asked per unknown column batch
    max_unknown_column_questions: int = _i("CONTRIB_MAX_COLUMN_QUESTIONS", 3)


CONFIG = PipelineConfig()
