"""Failure-processing batch job.

Pulls unprocessed failures, generates a correction, scores and categorizes
it, and appends the result to the ledger. Idempotent: a failure whose reply
text already has an improvement is skipped. Partial-failure tolerant: a bad
record is logged and the batch moves on.
"""

from __future__ import annotations

import os
import socket
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterator

from ..errors import StorageUnavailable
from ..logging_config import LogContext, get_logger
from ..store.database import Database, to_timestamp, utcnow
from ..store.failures import FailureRecord, FailureStore
from .generator import CorrectionGenerator, is_unable_to_generate
from .ledger import ImprovementLedger, ImprovementRecord
from .scoring import ImprovementScorer

logger = get_logger(__name__)


class BatchGuard:
    """At most one running batch.

    Always holds a process-local lock. Given a database it also takes a lease
    row in the shared store, so overlapping runs from separate processes
    (two cron ticks, a manual reprocess) exclude each other. An expired lease
    is taken over, so a crashed holder blocks batches for at most
    ``lease_seconds``.
    """

    def __init__(
        self,
        db: Database | None = None,
        name: str = "failure_processing",
        lease_seconds: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._lock = threading.Lock()
        self.db = db
        self.name = name
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    @property
    def running(self) -> bool:
        if self._lock.locked():
            return True
        if self.db is None:
            return False
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM batch_lease WHERE name = ? AND expires_at > ?",
                (self.name, to_timestamp(self.clock())),
            ).fetchone()
        return row is not None

    def _acquire_lease(self) -> bool:
        now = self.clock()
        expires_at = now + timedelta(seconds=self.lease_seconds)
        with self.db.connect() as conn:
            conn.execute(
                "DELETE FROM batch_lease WHERE name = ? AND expires_at <= ?",
                (self.name, to_timestamp(now)),
            )
            cursor = conn.execute(
                "INSERT OR IGNORE INTO batch_lease (name, holder, expires_at) VALUES (?, ?, ?)",
                (self.name, self.holder, to_timestamp(expires_at)),
            )
            return cursor.rowcount == 1

    def _release_lease(self) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "DELETE FROM batch_lease WHERE name = ? AND holder = ?",
                (self.name, self.holder),
            )

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yield True if this caller acquired the guard, False if a batch is running."""
        acquired = self._lock.acquire(blocking=False)
        if acquired and self.db is not None:
            try:
                leased = self._acquire_lease()
            except BaseException:
                self._lock.release()
                raise
            if not leased:
                logger.info(f"Lease {self.name} is held by another process")
                self._lock.release()
                acquired = False
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    if self.db is not None:
                        self._release_lease()
                finally:
                    self._lock.release()


@dataclass
class BatchResult:
    """Outcome of one processing run."""

    skipped_concurrent: bool = False
    candidates: int = 0
    processed: int = 0
    duplicates: int = 0
    failed: int = 0
    improvements: list[ImprovementRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "skipped_concurrent": self.skipped_concurrent,
            "candidates": self.candidates,
            "processed": self.processed,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class FailureProcessor:
    """Turns FailureRecords into ImprovementRecords."""

    def __init__(
        self,
        failure_store: FailureStore,
        ledger: ImprovementLedger,
        generator: CorrectionGenerator,
        scorer: ImprovementScorer,
        guard: BatchGuard | None = None,
        batch_limit: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.failure_store = failure_store
        self.ledger = ledger
        self.generator = generator
        self.scorer = scorer
        self.guard = guard or BatchGuard()
        self.batch_limit = batch_limit
        self.clock = clock

    def process_batch(self, limit: int | None = None) -> BatchResult:
        """Process up to `limit` unprocessed failures.

        A second concurrent call returns immediately with skipped_concurrent set.

        Raises:
            StorageUnavailable: if the store fails; the scheduler retries next tick
        """
        with self.guard.hold() as acquired:
            if not acquired:
                logger.info("Failure processing already running, skipping")
                return BatchResult(skipped_concurrent=True, finished_at=self.clock())
            return self._run(limit or self.batch_limit)

    def force_reprocess(self, limit: int | None = None) -> BatchResult:
        """Clear the ledger and regenerate every improvement from scratch.

        Explicit maintenance action; never scheduled.
        """
        with self.guard.hold() as acquired:
            if not acquired:
                logger.info("Failure processing already running, force reprocess skipped")
                return BatchResult(skipped_concurrent=True, finished_at=self.clock())
            logger.warning("Force reprocessing: clearing improvement ledger")
            self.ledger.clear()
            total = self.failure_store.count()
            return self._run(max(limit or 0, total, 1))

    def _run(self, limit: int) -> BatchResult:
        result = BatchResult(started_at=self.clock())
        failures = self.failure_store.list_unprocessed(limit)
        result.candidates = len(failures)
        logger.info(f"Starting failure processing: {result.candidates} candidates")

        for index, failure in enumerate(failures, start=1):
            with LogContext(failure_id=failure.id):
                try:
                    record = self.process_one(failure)
                except StorageUnavailable:
                    raise
                except Exception as e:
                    result.failed += 1
                    result.errors.append(f"{failure.id}: {e}")
                    logger.error(f"Failed to process failure {failure.id}: {e}", exc_info=True)
                    continue

            if record is None:
                # Either a duplicate reply or a provider failure; both logged in process_one
                if self.ledger.has_reply(failure.assistant_reply):
                    result.duplicates += 1
                else:
                    result.failed += 1
                continue

            result.processed += 1
            result.improvements.append(record)
            logger.info(f"Processed improvement {index}/{result.candidates}")

        result.finished_at = self.clock()
        logger.info(
            f"Failure processing complete: {result.processed} improvements, "
            f"{result.duplicates} duplicates, {result.failed} failed"
        )
        return result

    def process_one(self, failure: FailureRecord) -> ImprovementRecord | None:
        """Generate, score and store one improvement.

        Returns None when the reply already has an improvement or the
        correction could not be generated; the latter stays unprocessed and
        is retried by the next batch.
        """
        if self.ledger.has_reply(failure.assistant_reply):
            logger.debug(f"Failure {failure.id} already has an improvement")
            return None

        corrected = self.generator.generate_correction(
            prompt=failure.customer_message,
            bad_reply=failure.assistant_reply,
            good_reply=failure.human_correction,
            explanation=failure.failure_explanation,
        )
        if is_unable_to_generate(corrected):
            logger.warning(f"No correction generated for failure {failure.id}, will retry next batch")
            return None

        gain = self.scorer.estimate_score_gain(failure.assistant_reply, corrected)
        category = self.scorer.categorize_failure(failure.failure_explanation)

        return self.ledger.append(
            source_failure_id=failure.id,
            original_prompt=failure.customer_message,
            original_reply=failure.assistant_reply,
            corrected_reply=corrected,
            score_gain_estimate=gain,
            failure_category=category,
        )
