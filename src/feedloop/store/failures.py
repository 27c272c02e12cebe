"""Failure records: replies a reviewer judged "not useful"."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..logging_config import get_logger
from .database import Database, from_timestamp, to_timestamp, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class FailureRecord:
    """An immutable record of an inadequate assistant reply."""

    id: str
    customer_message: str
    assistant_reply: str
    failure_explanation: str
    human_correction: Optional[str] = None
    captured_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["captured_at"] = to_timestamp(self.captured_at)
        return data


class FailureStore:
    """Persistence boundary for raw failure records."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def record_failure(
        self,
        message: str,
        assistant_reply: str,
        explanation: str,
        human_correction: Optional[str] = None,
    ) -> str:
        """Capture a failed reply.

        Returns:
            The new FailureRecord id

        Raises:
            StorageUnavailable: if the backing store cannot be written
        """
        record_id = str(uuid.uuid4())
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO failures (
                    id, customer_message, assistant_reply, human_correction,
                    failure_explanation, captured_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    message,
                    assistant_reply,
                    human_correction,
                    explanation,
                    to_timestamp(self.clock()),
                ),
            )
        logger.debug(f"Recorded failure {record_id}")
        return record_id

    def get(self, record_id: str) -> Optional[FailureRecord]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM failures WHERE id = ?", (record_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_unprocessed(self, limit: int = 50) -> list[FailureRecord]:
        """Return the most recent failures with no improvement yet, newest first.

        A failure counts as processed once any improvement exists for the same
        assistant reply text.
        """
        if limit <= 0:
            return []
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT f.* FROM failures f
                WHERE NOT EXISTS (
                    SELECT 1 FROM improvements i
                    WHERE i.original_reply = f.assistant_reply
                )
                ORDER BY f.captured_at DESC, f.rowid DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def count(self) -> int:
        with self.db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM failures").fetchone()[0]

    @staticmethod
    def _from_row(row) -> FailureRecord:
        return FailureRecord(
            id=row["id"],
            customer_message=row["customer_message"],
            assistant_reply=row["assistant_reply"],
            failure_explanation=row["failure_explanation"],
            human_correction=row["human_correction"],
            captured_at=from_timestamp(row["captured_at"]),
        )
