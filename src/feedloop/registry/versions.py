"""Registry of fine-tuned model versions and their promotion state.

At most one version is active at a time. The database enforces it with a
partial unique index, and promotion swaps the active flag in one transaction.
Nothing in feedloop promotes a version automatically.
"""

from __future__ import annotations

import re
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..errors import RegistryError
from ..logging_config import get_logger
from ..store.database import Database, from_timestamp, to_timestamp, utcnow

logger = get_logger(__name__)

_TAG_PATTERN = re.compile(r"^v(\d+)$")


@dataclass
class ModelVersion:
    """A fine-tuned model artifact."""

    id: str
    version_tag: str
    fine_tune_artifact_id: str
    base_model: str
    training_example_count: int = 0
    is_active: bool = False
    description: str = ""
    job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    promoted_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "version_tag": self.version_tag,
            "fine_tune_artifact_id": self.fine_tune_artifact_id,
            "base_model": self.base_model,
            "training_example_count": self.training_example_count,
            "is_active": self.is_active,
            "description": self.description,
            "job_id": self.job_id,
            "created_at": to_timestamp(self.created_at),
            "promoted_at": to_timestamp(self.promoted_at) if self.promoted_at else None,
        }


class VersionRegistry:
    """SQLite-backed model version registry.

    Example:
        registry = VersionRegistry(db)
        version = registry.register("ft:gpt-4o-mini:acme:v3", base_model="gpt-4o-mini",
                                    training_example_count=412)
        registry.promote(version.id)
        registry.rollback()
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _next_tag(self, conn: sqlite3.Connection) -> str:
        numbers = [
            int(match.group(1))
            for (tag,) in conn.execute("SELECT version_tag FROM model_versions")
            if (match := _TAG_PATTERN.match(tag))
        ]
        return f"v{max(numbers, default=0) + 1}"

    def register(
        self,
        fine_tune_artifact_id: str,
        base_model: str,
        training_example_count: int = 0,
        version_tag: str | None = None,
        description: str = "",
        job_id: str | None = None,
    ) -> ModelVersion:
        """Register an inactive version. Auto-assigns v1, v2, ... when no tag is given.

        Raises:
            RegistryError: if the tag or job id is already registered
        """
        try:
            with self.db.connect() as conn:
                version = ModelVersion(
                    id=str(uuid.uuid4()),
                    version_tag=version_tag or self._next_tag(conn),
                    fine_tune_artifact_id=fine_tune_artifact_id,
                    base_model=base_model,
                    training_example_count=training_example_count,
                    description=description,
                    job_id=job_id,
                    created_at=self.clock(),
                )
                conn.execute(
                    """
                    INSERT INTO model_versions (
                        id, version_tag, fine_tune_artifact_id, base_model,
                        training_example_count, is_active, description, job_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                    """,
                    (
                        version.id,
                        version.version_tag,
                        version.fine_tune_artifact_id,
                        version.base_model,
                        version.training_example_count,
                        version.description,
                        version.job_id,
                        to_timestamp(version.created_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise RegistryError(f"Version already registered: {version_tag or job_id}") from e

        logger.info(f"Registered model version {version.version_tag} ({fine_tune_artifact_id})")
        return version

    def register_from_job(
        self,
        job_id: str,
        fine_tune_artifact_id: str,
        base_model: str,
        training_example_count: int,
    ) -> ModelVersion:
        """Register the artifact of a finished job. Repeat calls return the same version."""
        existing = self.get_by_job(job_id)
        if existing is not None:
            return existing
        return self.register(
            fine_tune_artifact_id=fine_tune_artifact_id,
            base_model=base_model,
            training_example_count=training_example_count,
            description=f"Fine-tuned by job {job_id}",
            job_id=job_id,
        )

    def get(self, id_or_tag: str) -> Optional[ModelVersion]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM model_versions WHERE id = ? OR version_tag = ?",
                (id_or_tag, id_or_tag),
            ).fetchone()
        return self._from_row(row) if row else None

    def get_by_job(self, job_id: str) -> Optional[ModelVersion]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM model_versions WHERE job_id = ?", (job_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_versions(self) -> list[ModelVersion]:
        """All versions, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM model_versions ORDER BY created_at DESC, rowid DESC").fetchall()
        return [self._from_row(row) for row in rows]

    def active_version(self) -> Optional[ModelVersion]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM model_versions WHERE is_active = 1").fetchone()
        return self._from_row(row) if row else None

    def promote(self, id_or_tag: str) -> ModelVersion:
        """Make a version the only active one.

        Raises:
            RegistryError: if the version is unknown
        """
        target = self.get(id_or_tag)
        if target is None:
            raise RegistryError(f"Unknown model version: {id_or_tag}")

        now = self.clock()
        with self.db.connect() as conn:
            conn.execute("UPDATE model_versions SET is_active = 0 WHERE is_active = 1 AND id != ?", (target.id,))
            conn.execute(
                "UPDATE model_versions SET is_active = 1, promoted_at = ? WHERE id = ?",
                (to_timestamp(now), target.id),
            )

        logger.info(f"Promoted model version {target.version_tag}")
        return self.get(target.id)

    def deactivate_all(self) -> int:
        with self.db.connect() as conn:
            cursor = conn.execute("UPDATE model_versions SET is_active = 0 WHERE is_active = 1")
            count = cursor.rowcount
        if count:
            logger.info("Deactivated all model versions, traffic falls back to the base model")
        return count

    def rollback(self, id_or_tag: str | None = None) -> ModelVersion:
        """Re-activate an earlier version.

        Without an explicit version, picks the most recently promoted version
        other than the current active one.

        Raises:
            RegistryError: if there is nothing to roll back to
        """
        if id_or_tag is not None:
            return self.promote(id_or_tag)

        active = self.active_version()
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM model_versions
                WHERE promoted_at IS NOT NULL AND id != ?
                ORDER BY promoted_at DESC
                LIMIT 1
                """,
                (active.id if active else "",),
            ).fetchone()
        if row is None:
            raise RegistryError("No previously promoted version to roll back to")

        previous = self._from_row(row)
        logger.warning(
            f"Rolling back from {active.version_tag if active else 'base'} to {previous.version_tag}"
        )
        return self.promote(previous.id)

    @staticmethod
    def _from_row(row) -> ModelVersion:
        return ModelVersion(
            id=row["id"],
            version_tag=row["version_tag"],
            fine_tune_artifact_id=row["fine_tune_artifact_id"],
            base_model=row["base_model"],
            training_example_count=row["training_example_count"],
            is_active=bool(row["is_active"]),
            description=row["description"],
            job_id=row["job_id"],
            created_at=from_timestamp(row["created_at"]),
            promoted_at=from_timestamp(row["promoted_at"]) if row["promoted_at"] else None,
        )
