"""Fine-tuning job submission and tracking.

feedloop never trains a model itself. It hands an export batch to a hosted
fine-tuning backend, polls the job through its lifecycle, and registers the
resulting artifact as an inactive ModelVersion.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from ..errors import FineTuneError
from ..export.corpus import ExportResult
from ..logging_config import LogContext, get_logger
from ..notifications.base import NotificationManager
from ..store.database import Database, from_timestamp, to_timestamp, utcnow
from .versions import ModelVersion, VersionRegistry

logger = get_logger(__name__)


class JobStatus(str, Enum):
    VALIDATING = "validating"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


_STATUS_ALIASES = {
    "validating_files": JobStatus.VALIDATING,
    "pending": JobStatus.QUEUED,
    "canceled": JobStatus.CANCELLED,
}

PROGRESS = {
    JobStatus.VALIDATING: (10, "Validating training file"),
    JobStatus.QUEUED: (20, "Queued for training"),
    JobStatus.RUNNING: (50, "Training in progress"),
    JobStatus.SUCCEEDED: (100, "Training completed"),
    JobStatus.FAILED: (0, "Training failed"),
    JobStatus.CANCELLED: (0, "Training cancelled"),
}


def normalize_status(raw: str) -> JobStatus:
    value = raw.strip().lower()
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return JobStatus(value)
    except ValueError as e:
        raise FineTuneError(f"Unknown fine-tuning status: {raw!r}") from e


@dataclass
class JobSnapshot:
    """What the backend reports about a job."""

    job_id: str
    status: str
    artifact_id: Optional[str] = None
    trained_tokens: Optional[int] = None
    error: Optional[str] = None


@dataclass
class FineTuneJob:
    job_id: str
    batch_id: str
    training_file: str
    base_model: str
    status: JobStatus = JobStatus.VALIDATING
    artifact_id: Optional[str] = None
    trained_tokens: Optional[int] = None
    error: Optional[str] = None
    example_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "batch_id": self.batch_id,
            "training_file": self.training_file,
            "base_model": self.base_model,
            "status": self.status.value,
            "artifact_id": self.artifact_id,
            "trained_tokens": self.trained_tokens,
            "error": self.error,
            "example_count": self.example_count,
            "created_at": to_timestamp(self.created_at),
            "updated_at": to_timestamp(self.updated_at),
        }


class FineTuneBackend(ABC):
    """Hosted fine-tuning service."""

    @abstractmethod
    def upload_training_file(self, path: Path) -> str:
        """Upload a JSONL file and return its file reference."""

    @abstractmethod
    def create_job(
        self,
        training_file: str,
        base_model: str,
        suffix: str | None = None,
        hyperparameters: dict[str, Any] | None = None,
    ) -> JobSnapshot:
        """Start a job on an uploaded training file."""

    @abstractmethod
    def retrieve_job(self, job_id: str) -> JobSnapshot:
        """Current state of a job."""


class OpenAIFineTuneBackend(FineTuneBackend):
    """OpenAI fine-tuning API."""

    def __init__(self, api_key: str | None = None, timeout: float = 60.0):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.timeout = timeout
        self._client = None

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise FineTuneError("OPENAI_API_KEY not set. Set environment variable or pass api_key.")
            try:
                from openai import OpenAI
            except ImportError as e:
                raise FineTuneError("openai not installed. Install with: pip install 'feedloop[openai]'") from e
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    @staticmethod
    def _snapshot(job: Any) -> JobSnapshot:
        error = getattr(job, "error", None)
        message = getattr(error, "message", None) if error is not None else None
        return JobSnapshot(
            job_id=job.id,
            status=job.status,
            artifact_id=getattr(job, "fine_tuned_model", None),
            trained_tokens=getattr(job, "trained_tokens", None),
            error=message,
        )

    def upload_training_file(self, path: Path) -> str:
        client = self._get_client()
        try:
            with open(path, "rb") as f:
                uploaded = client.files.create(file=f, purpose="fine-tune")
        except OSError as e:
            raise FineTuneError(f"Cannot read training file {path}: {e}") from e
        except Exception as e:
            raise FineTuneError(f"Training file upload failed: {e}") from e
        return uploaded.id

    def create_job(self, training_file, base_model, suffix=None, hyperparameters=None) -> JobSnapshot:
        client = self._get_client()
        kwargs: dict[str, Any] = {"training_file": training_file, "model": base_model}
        if suffix:
            kwargs["suffix"] = suffix
        if hyperparameters:
            kwargs["hyperparameters"] = hyperparameters
        try:
            job = client.fine_tuning.jobs.create(**kwargs)
        except Exception as e:
            raise FineTuneError(f"Fine-tuning job creation failed: {e}") from e
        return self._snapshot(job)

    def retrieve_job(self, job_id: str) -> JobSnapshot:
        client = self._get_client()
        try:
            job = client.fine_tuning.jobs.retrieve(job_id)
        except Exception as e:
            raise FineTuneError(f"Cannot retrieve fine-tuning job {job_id}: {e}") from e
        return self._snapshot(job)


class FineTuneManager:
    """Submits export batches for fine-tuning and tracks the jobs."""

    def __init__(
        self,
        db: Database,
        backend: FineTuneBackend,
        registry: VersionRegistry,
        notifications: NotificationManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.backend = backend
        self.registry = registry
        self.notifications = notifications
        self.clock = clock

    def submit(
        self,
        export: ExportResult,
        base_model: str,
        suffix: str | None = None,
        hyperparameters: dict[str, Any] | None = None,
    ) -> FineTuneJob:
        """Upload an export batch and start a job on it.

        Raises:
            FineTuneError: if the batch is empty or the backend rejects it
        """
        if export.path is None or export.example_count == 0:
            raise FineTuneError(f"Export batch {export.batch_id} has no training examples")

        with LogContext(batch_id=export.batch_id):
            training_file = self.backend.upload_training_file(export.path)
            snapshot = self.backend.create_job(training_file, base_model, suffix, hyperparameters)
            now = self.clock()
            job = FineTuneJob(
                job_id=snapshot.job_id,
                batch_id=export.batch_id,
                training_file=training_file,
                base_model=base_model,
                status=normalize_status(snapshot.status),
                example_count=export.example_count,
                created_at=now,
                updated_at=now,
            )
            self._insert(job)
            logger.info(f"Submitted fine-tuning job {job.job_id} on {base_model} ({job.example_count} examples)")

        if self.notifications:
            self.notifications.notify(
                title=f"Fine-tuning submitted: {job.job_id}",
                message=f"{job.example_count} examples from {job.batch_id} on {base_model}",
                event_type="finetune_submitted",
                batch_id=job.batch_id,
                job_id=job.job_id,
            )
        return job

    def get(self, job_id: str) -> Optional[FineTuneJob]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM fine_tune_jobs WHERE job_id = ?", (job_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_jobs(self) -> list[FineTuneJob]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM fine_tune_jobs ORDER BY created_at DESC").fetchall()
        return [self._from_row(row) for row in rows]

    def poll(self, job_id: str) -> FineTuneJob:
        """Refresh a job from the backend. Terminal jobs are never refreshed.

        Raises:
            FineTuneError: if the job is unknown or the backend fails
        """
        job = self.get(job_id)
        if job is None:
            raise FineTuneError(f"Unknown fine-tuning job: {job_id}")
        if job.status.is_terminal:
            return job

        with LogContext(job_id=job_id):
            snapshot = self.backend.retrieve_job(job_id)
            previous = job.status
            job.status = normalize_status(snapshot.status)
            job.artifact_id = snapshot.artifact_id or job.artifact_id
            job.trained_tokens = snapshot.trained_tokens or job.trained_tokens
            job.error = snapshot.error
            job.updated_at = self.clock()
            self._update(job)

            if job.status != previous:
                logger.info(f"Fine-tuning job {job_id}: {previous.value} -> {job.status.value}")
            if job.status.is_terminal:
                self._on_finished(job)
        return job

    def _on_finished(self, job: FineTuneJob) -> Optional[ModelVersion]:
        if job.status == JobStatus.SUCCEEDED and job.artifact_id:
            version = self.registry.register_from_job(
                job_id=job.job_id,
                fine_tune_artifact_id=job.artifact_id,
                base_model=job.base_model,
                training_example_count=job.example_count,
            )
            if self.notifications:
                self.notifications.notify_finetune_finished(job.job_id, True, model_name=job.artifact_id)
            return version

        if job.status == JobStatus.SUCCEEDED:
            logger.warning(f"Fine-tuning job {job.job_id} succeeded without an artifact id")
        elif self.notifications:
            self.notifications.notify_finetune_finished(job.job_id, False, error=job.error or job.status.value)
        return None

    def progress(self, job: FineTuneJob) -> dict:
        percent, step = PROGRESS[job.status]
        return {"job_id": job.job_id, "status": job.status.value, "percent": percent, "step": step}

    def report(self, job: FineTuneJob) -> str:
        progress = self.progress(job)
        lines = [
            f"Fine-tuning job {job.job_id}",
            f"  Status:     {job.status.value} ({progress['percent']}%, {progress['step']})",
            f"  Base model: {job.base_model}",
            f"  Batch:      {job.batch_id} ({job.example_count} examples)",
            f"  Submitted:  {to_timestamp(job.created_at)}",
        ]
        if job.artifact_id:
            lines.append(f"  Artifact:   {job.artifact_id}")
        if job.trained_tokens:
            lines.append(f"  Tokens:     {job.trained_tokens:,}")
        if job.error:
            lines.append(f"  Error:      {job.error}")
        return "\n".join(lines)

    def _insert(self, job: FineTuneJob) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO fine_tune_jobs (
                    job_id, batch_id, training_file, base_model, status, artifact_id,
                    trained_tokens, error, example_count, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.job_id,
                    job.batch_id,
                    job.training_file,
                    job.base_model,
                    job.status.value,
                    job.artifact_id,
                    job.trained_tokens,
                    job.error,
                    job.example_count,
                    to_timestamp(job.created_at),
                    to_timestamp(job.updated_at),
                ),
            )

    def _update(self, job: FineTuneJob) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                UPDATE fine_tune_jobs
                SET status = ?, artifact_id = ?, trained_tokens = ?, error = ?, updated_at = ?
                WHERE job_id = ?
                """,
                (
                    job.status.value,
                    job.artifact_id,
                    job.trained_tokens,
                    job.error,
                    to_timestamp(job.updated_at),
                    job.job_id,
                ),
            )

    @staticmethod
    def _from_row(row) -> FineTuneJob:
        return FineTuneJob(
            job_id=row["job_id"],
            batch_id=row["batch_id"],
            training_file=row["training_file"],
            base_model=row["base_model"],
            status=JobStatus(row["status"]),
            artifact_id=row["artifact_id"],
            trained_tokens=row["trained_tokens"],
            error=row["error"],
            example_count=row["example_count"],
            created_at=from_timestamp(row["created_at"]),
            updated_at=from_timestamp(row["updated_at"]),
        )
