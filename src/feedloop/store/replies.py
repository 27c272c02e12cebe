"""Live reply log.

Every routed assistant reply is recorded with its variant, confidence and,
once a reviewer weighs in, a usefulness flag. Drift and A/B aggregates are
computed from this log.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from ..logging_config import get_logger
from .database import Database, from_timestamp, to_timestamp, utcnow
from .failures import FailureStore

logger = get_logger(__name__)


@dataclass
class ReplyRecord:
    """A single assistant reply served to a user."""

    id: str
    user_id: str
    variant_key: str
    is_candidate: bool
    message: str
    reply: str
    confidence: float
    created_at: datetime
    latency_ms: float = 0.0
    useful: Optional[bool] = None
    fallback: bool = False


class ReplyLog:
    """Records served replies and reviewer feedback."""

    def __init__(
        self,
        db: Database,
        failure_store: FailureStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.failure_store = failure_store
        self.clock = clock

    def log_reply(
        self,
        user_id: str,
        variant_key: str,
        is_candidate: bool,
        message: str,
        reply: str,
        confidence: float,
        latency_ms: float = 0.0,
        fallback: bool = False,
        useful: Optional[bool] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        """Log a served reply. Returns the reply id."""
        reply_id = str(uuid.uuid4())
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO replies (
                    id, user_id, variant_key, is_candidate, message, reply,
                    confidence, latency_ms, useful, fallback, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reply_id,
                    user_id,
                    variant_key,
                    int(is_candidate),
                    message,
                    reply,
                    confidence,
                    latency_ms,
                    None if useful is None else int(useful),
                    int(fallback),
                    to_timestamp(created_at or self.clock()),
                ),
            )
        return reply_id

    def get(self, reply_id: str) -> Optional[ReplyRecord]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM replies WHERE id = ?", (reply_id,)).fetchone()
        return self._from_row(row) if row else None

    def record_feedback(
        self,
        reply_id: str,
        useful: bool,
        explanation: Optional[str] = None,
        human_correction: Optional[str] = None,
    ) -> Optional[str]:
        """Mark a reply useful or not useful.

        A "not useful" verdict with an explanation also captures a
        FailureRecord for the improvement batch.

        Returns:
            The FailureRecord id when one was captured, else None

        Raises:
            KeyError: if the reply id is unknown
        """
        record = self.get(reply_id)
        if record is None:
            raise KeyError(f"Unknown reply: {reply_id}")

        with self.db.connect() as conn:
            conn.execute("UPDATE replies SET useful = ? WHERE id = ?", (int(useful), reply_id))

        if useful or not explanation or self.failure_store is None:
            return None

        failure_id = self.failure_store.record_failure(
            message=record.message,
            assistant_reply=record.reply,
            explanation=explanation,
            human_correction=human_correction,
        )
        logger.info(f"Reply {reply_id} marked not useful, captured failure {failure_id}")
        return failure_id

    def iter_since(self, since: datetime, until: Optional[datetime] = None) -> Iterator[ReplyRecord]:
        """Yield replies created in [since, until), oldest first."""
        params = [to_timestamp(since)]
        query = "SELECT * FROM replies WHERE created_at >= ?"
        if until is not None:
            query += " AND created_at < ?"
            params.append(to_timestamp(until))
        query += " ORDER BY created_at ASC"

        with self.db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        for row in rows:
            yield self._from_row(row)

    @staticmethod
    def _from_row(row) -> ReplyRecord:
        useful = row["useful"]
        return ReplyRecord(
            id=row["id"],
            user_id=row["user_id"],
            variant_key=row["variant_key"],
            is_candidate=bool(row["is_candidate"]),
            message=row["message"],
            reply=row["reply"],
            confidence=row["confidence"],
            latency_ms=row["latency_ms"],
            useful=None if useful is None else bool(useful),
            fallback=bool(row["fallback"]),
            created_at=from_timestamp(row["created_at"]),
        )
