"""SQLite persistence boundary.

All feedloop entities live in one SQLite file. Each operation opens its own
connection, so concurrent batch jobs and read-only drift queries never share
a cursor.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from ..errors import StorageUnavailable
from ..logging_config import get_logger

logger = get_logger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS failures (
        id TEXT PRIMARY KEY,
        customer_message TEXT NOT NULL,
        assistant_reply TEXT NOT NULL,
        human_correction TEXT,
        failure_explanation TEXT NOT NULL,
        captured_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_failures_captured_at ON failures(captured_at)",
    "CREATE INDEX IF NOT EXISTS idx_failures_reply ON failures(assistant_reply)",
    """
    CREATE TABLE IF NOT EXISTS improvements (
        id TEXT PRIMARY KEY,
        source_failure_id TEXT NOT NULL,
        original_prompt TEXT NOT NULL,
        original_reply TEXT NOT NULL UNIQUE,
        corrected_reply TEXT NOT NULL,
        score_gain_estimate REAL NOT NULL DEFAULT 0 CHECK (score_gain_estimate >= 0),
        failure_category TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_improvements_gain ON improvements(score_gain_estimate)",
    "CREATE INDEX IF NOT EXISTS idx_improvements_category ON improvements(failure_category)",
    """
    CREATE TABLE IF NOT EXISTS training_examples (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        improvement_id TEXT NOT NULL,
        batch_id TEXT NOT NULL,
        prompt_text TEXT NOT NULL,
        completion_text TEXT NOT NULL,
        exported INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_examples_improvement ON training_examples(improvement_id)",
    "CREATE INDEX IF NOT EXISTS idx_examples_batch ON training_examples(batch_id)",
    """
    CREATE TABLE IF NOT EXISTS export_batches (
        batch_id TEXT PRIMARY KEY,
        path TEXT NOT NULL,
        example_count INTEGER NOT NULL,
        size_bytes INTEGER NOT NULL,
        selector TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS replies (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        variant_key TEXT NOT NULL,
        is_candidate INTEGER NOT NULL,
        message TEXT NOT NULL,
        reply TEXT NOT NULL,
        confidence REAL NOT NULL,
        latency_ms REAL NOT NULL DEFAULT 0,
        useful INTEGER,
        fallback INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_replies_created_at ON replies(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_replies_variant ON replies(variant_key)",
    """
    CREATE TABLE IF NOT EXISTS model_versions (
        id TEXT PRIMARY KEY,
        version_tag TEXT NOT NULL UNIQUE,
        fine_tune_artifact_id TEXT NOT NULL,
        base_model TEXT NOT NULL,
        training_example_count INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 0,
        description TEXT NOT NULL DEFAULT '',
        job_id TEXT UNIQUE,
        created_at TEXT NOT NULL,
        promoted_at TEXT
    )
    """,
    # At most one active version
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_model_versions_single_active
    ON model_versions(is_active) WHERE is_active = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS fine_tune_jobs (
        job_id TEXT PRIMARY KEY,
        batch_id TEXT NOT NULL,
        training_file TEXT NOT NULL,
        base_model TEXT NOT NULL,
        status TEXT NOT NULL,
        artifact_id TEXT,
        trained_tokens INTEGER,
        error TEXT,
        example_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # One row per held batch lease
    """
    CREATE TABLE IF NOT EXISTS batch_lease (
        name TEXT PRIMARY KEY,
        holder TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Serialize a datetime as a sortable UTC ISO string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """SQLite database shared by the stores."""

    def __init__(self, db_path: Path, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create database directory: {e}") from e
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, and always close it.

        Integrity violations propagate unchanged; every other sqlite error is
        raised as StorageUnavailable.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailable(f"Storage operation failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()
