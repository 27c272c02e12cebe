"""Append-only ledger of generated corrections, ranked by score gain."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..logging_config import get_logger
from ..store.database import Database, from_timestamp, to_timestamp, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class ImprovementRecord:
    """A generated, scored correction derived from one FailureRecord."""

    id: str
    source_failure_id: str
    original_prompt: str
    original_reply: str
    corrected_reply: str
    score_gain_estimate: float
    failure_category: str
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.score_gain_estimate < 0:
            object.__setattr__(self, "score_gain_estimate", 0.0)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = to_timestamp(self.created_at)
        return data


@dataclass
class LedgerStatistics:
    count: int = 0
    avg_gain: float = 0.0
    category_histogram: dict[str, int] = field(default_factory=dict)
    last_processed_at: Optional[datetime] = None
    exported_count: int = 0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "avg_gain": self.avg_gain,
            "category_histogram": self.category_histogram,
            "last_processed_at": to_timestamp(self.last_processed_at) if self.last_processed_at else None,
            "exported_count": self.exported_count,
        }


class ImprovementLedger:
    """Dedup + ranking store over generated corrections.

    No two records share the same original reply text; the database enforces
    it with a unique constraint.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def has_reply(self, original_reply: str) -> bool:
        """Whether an improvement already exists for this reply text."""
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM improvements WHERE original_reply = ? LIMIT 1",
                (original_reply,),
            ).fetchone()
        return row is not None

    def append(
        self,
        source_failure_id: str,
        original_prompt: str,
        original_reply: str,
        corrected_reply: str,
        score_gain_estimate: float,
        failure_category: str,
    ) -> Optional[ImprovementRecord]:
        """Append a record.

        Returns:
            The stored record, or None if the reply text was already present
        """
        record = ImprovementRecord(
            id=str(uuid.uuid4()),
            source_failure_id=source_failure_id,
            original_prompt=original_prompt,
            original_reply=original_reply,
            corrected_reply=corrected_reply,
            score_gain_estimate=max(0.0, float(score_gain_estimate)),
            failure_category=failure_category,
            created_at=self.clock(),
        )
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO improvements (
                        id, source_failure_id, original_prompt, original_reply,
                        corrected_reply, score_gain_estimate, failure_category, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.source_failure_id,
                        record.original_prompt,
                        record.original_reply,
                        record.corrected_reply,
                        record.score_gain_estimate,
                        record.failure_category,
                        to_timestamp(record.created_at),
                    ),
                )
        except sqlite3.IntegrityError:
            logger.debug(f"Duplicate original reply for failure {source_failure_id}, skipped")
            return None
        return record

    def get(self, improvement_id: str) -> Optional[ImprovementRecord]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM improvements WHERE id = ?", (improvement_id,)).fetchone()
        return self._from_row(row) if row else None

    def leaderboard(self, limit: int = 20) -> list[ImprovementRecord]:
        """Records by descending score gain, ties broken by recency."""
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM improvements
                ORDER BY score_gain_estimate DESC, created_at DESC, rowid DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def all_records(self) -> list[ImprovementRecord]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM improvements ORDER BY created_at ASC, rowid ASC").fetchall()
        return [self._from_row(row) for row in rows]

    def top_categories(self, limit: int = 5) -> list[tuple[str, int]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT failure_category, COUNT(*) AS cnt FROM improvements
                GROUP BY failure_category
                ORDER BY cnt DESC, failure_category ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def statistics(self) -> LedgerStatistics:
        with self.db.connect() as conn:
            count, avg_gain, last = conn.execute(
                "SELECT COUNT(*), AVG(score_gain_estimate), MAX(created_at) FROM improvements"
            ).fetchone()
            histogram_rows = conn.execute(
                "SELECT failure_category, COUNT(*) FROM improvements GROUP BY failure_category"
            ).fetchall()
            exported = conn.execute(
                """
                SELECT COUNT(DISTINCT e.improvement_id) FROM training_examples e
                JOIN improvements i ON i.id = e.improvement_id
                WHERE e.exported = 1
                """
            ).fetchone()[0]

        return LedgerStatistics(
            count=count or 0,
            avg_gain=round(avg_gain or 0.0, 2),
            category_histogram={row[0]: row[1] for row in histogram_rows},
            last_processed_at=from_timestamp(last) if last else None,
            exported_count=exported or 0,
        )

    def clear(self) -> int:
        """Delete every record. Maintenance only; returns the number removed."""
        with self.db.connect() as conn:
            removed = conn.execute("DELETE FROM improvements").rowcount
        logger.warning(f"Cleared {removed} improvement records")
        return removed

    @staticmethod
    def _from_row(row) -> ImprovementRecord:
        return ImprovementRecord(
            id=row["id"],
            source_failure_id=row["source_failure_id"],
            original_prompt=row["original_prompt"],
            original_reply=row["original_reply"],
            corrected_reply=row["corrected_reply"],
            score_gain_estimate=row["score_gain_estimate"],
            failure_category=row["failure_category"],
            created_at=from_timestamp(row["created_at"]),
        )
