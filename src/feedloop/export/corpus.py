"""Training corpus export.

Snapshots ranked improvements into an immutable JSONL artifact, one chat
example per line, and flags the consumed improvements as exported only after
the file is durably on disk.
"""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..errors import ExportIOFailure
from ..logging_config import LogContext, get_logger
from ..improvement.ledger import ImprovementLedger, ImprovementRecord
from ..schema import DEFAULT_PERSONA
from ..store.database import Database, from_timestamp, to_timestamp, utcnow

logger = get_logger(__name__)


@dataclass
class ExportSelector:
    """Which improvements an export batch consumes."""

    min_score_gain: Optional[float] = None
    categories: list[str] = field(default_factory=list)
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    limit: Optional[int] = None
    include_exported: bool = False

    def to_dict(self) -> dict:
        return {
            "min_score_gain": self.min_score_gain,
            "categories": list(self.categories),
            "created_after": to_timestamp(self.created_after) if self.created_after else None,
            "created_before": to_timestamp(self.created_before) if self.created_before else None,
            "limit": self.limit,
            "include_exported": self.include_exported,
        }


@dataclass
class TrainingExample:
    prompt_text: str
    completion_text: str
    batch_id: str
    exported: bool = False
    improvement_id: Optional[str] = None


@dataclass
class ExportResult:
    batch_id: str
    example_count: int
    size_bytes: int
    path: Optional[Path] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "example_count": self.example_count,
            "size_bytes": self.size_bytes,
            "path": str(self.path) if self.path else None,
            "created_at": to_timestamp(self.created_at),
        }


class CorpusExporter:
    """Turns ranked improvements into a fine-tuning dataset."""

    def __init__(
        self,
        db: Database,
        output_dir: Path,
        persona: str = DEFAULT_PERSONA,
        default_limit: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.output_dir = Path(output_dir)
        self.persona = persona
        self.default_limit = default_limit
        self.clock = clock

    def select(self, selector: ExportSelector) -> list[ImprovementRecord]:
        """Improvements matching the selector, best first."""
        conditions = []
        params: list = []

        if selector.min_score_gain is not None:
            conditions.append("i.score_gain_estimate >= ?")
            params.append(selector.min_score_gain)
        if selector.categories:
            placeholders = ", ".join("?" for _ in selector.categories)
            conditions.append(f"i.failure_category IN ({placeholders})")
            params.extend(selector.categories)
        if selector.created_after is not None:
            conditions.append("i.created_at >= ?")
            params.append(to_timestamp(selector.created_after))
        if selector.created_before is not None:
            conditions.append("i.created_at < ?")
            params.append(to_timestamp(selector.created_before))
        if not selector.include_exported:
            conditions.append(
                "NOT EXISTS (SELECT 1 FROM training_examples e "
                "WHERE e.improvement_id = i.id AND e.exported = 1)"
            )

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(selector.limit or self.default_limit)

        with self.db.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT i.* FROM improvements i
                WHERE {where_clause}
                ORDER BY i.score_gain_estimate DESC, i.created_at DESC, i.rowid DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [ImprovementLedger._from_row(row) for row in rows]

    def format_example(self, record: ImprovementRecord) -> dict:
        """Chat example pairing the customer message with the corrected reply."""
        return {
            "messages": [
                {"role": "system", "content": self.persona},
                {"role": "user", "content": record.original_prompt},
                {"role": "assistant", "content": record.corrected_reply},
            ]
        }

    def export_batch(self, selector: ExportSelector | None = None) -> ExportResult:
        """Write one export batch.

        Raises:
            ExportIOFailure: if the artifact cannot be written; nothing is flagged
            StorageUnavailable: if the store fails
        """
        selector = selector or ExportSelector()
        now = self.clock()
        batch_id = f"batch_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}"

        with LogContext(batch_id=batch_id):
            records = self.select(selector)
            if not records:
                logger.warning("No improvements match the export selector")
                return ExportResult(batch_id=batch_id, example_count=0, size_bytes=0, created_at=now)

            examples = [
                TrainingExample(
                    prompt_text=r.original_prompt,
                    completion_text=r.corrected_reply,
                    batch_id=batch_id,
                    improvement_id=r.id,
                )
                for r in records
            ]
            self._insert_pending(examples)

            path = self.output_dir / f"training_data_{batch_id}.jsonl"
            try:
                size_bytes = self._write_artifact(path, records)
            except OSError as e:
                self._discard_pending(batch_id)
                logger.error(f"Export {batch_id} failed, nothing marked exported: {e}")
                raise ExportIOFailure(f"Cannot write {path}: {e}") from e

            self._finalize(batch_id, path, len(examples), size_bytes, selector, now)
            logger.info(f"Exported {len(examples)} training examples to {path}")

        return ExportResult(
            batch_id=batch_id,
            example_count=len(examples),
            size_bytes=size_bytes,
            path=path,
            created_at=now,
        )

    def _write_artifact(self, path: Path, records: list[ImprovementRecord]) -> int:
        """Write to a temp file, fsync, then move into place. Never edits in place."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        if path.exists():
            raise FileExistsError(f"Export artifact already exists: {path}")

        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                for record in records:
                    f.write(json.dumps(self.format_example(record)) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return path.stat().st_size

    def _insert_pending(self, examples: list[TrainingExample]) -> None:
        with self.db.connect() as conn:
            conn.executemany(
                """
                INSERT INTO training_examples (
                    improvement_id, batch_id, prompt_text, completion_text, exported
                ) VALUES (?, ?, ?, ?, 0)
                """,
                [(e.improvement_id, e.batch_id, e.prompt_text, e.completion_text) for e in examples],
            )

    def _discard_pending(self, batch_id: str) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "DELETE FROM training_examples WHERE batch_id = ? AND exported = 0",
                (batch_id,),
            )

    def _finalize(
        self,
        batch_id: str,
        path: Path,
        example_count: int,
        size_bytes: int,
        selector: ExportSelector,
        created_at: datetime,
    ) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO export_batches (
                    batch_id, path, example_count, size_bytes, selector, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    batch_id,
                    str(path),
                    example_count,
                    size_bytes,
                    json.dumps(selector.to_dict()),
                    to_timestamp(created_at),
                ),
            )
            conn.execute(
                "UPDATE training_examples SET exported = 1 WHERE batch_id = ? AND exported = 0",
                (batch_id,),
            )

    def examples_for_batch(self, batch_id: str) -> list[TrainingExample]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM training_examples WHERE batch_id = ? ORDER BY id ASC",
                (batch_id,),
            ).fetchall()
        return [
            TrainingExample(
                prompt_text=row["prompt_text"],
                completion_text=row["completion_text"],
                batch_id=row["batch_id"],
                exported=bool(row["exported"]),
                improvement_id=row["improvement_id"],
            )
            for row in rows
        ]

    def is_exported(self, improvement_id: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM training_examples WHERE improvement_id = ? AND exported = 1 LIMIT 1",
                (improvement_id,),
            ).fetchone()
        return row is not None

    def list_batches(self) -> list[ExportResult]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM export_batches ORDER BY created_at DESC").fetchall()
        return [self._batch_from_row(row) for row in rows]

    def get_batch(self, batch_id: str) -> Optional[ExportResult]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM export_batches WHERE batch_id = ?", (batch_id,)).fetchone()
        return self._batch_from_row(row) if row else None

    @staticmethod
    def _batch_from_row(row) -> ExportResult:
        return ExportResult(
            batch_id=row["batch_id"],
            example_count=row["example_count"],
            size_bytes=row["size_bytes"],
            path=Path(row["path"]),
            created_at=from_timestamp(row["created_at"]),
        )
