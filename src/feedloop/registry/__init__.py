"""Model version registry and fine-tuning job tracking."""

from .finetune import (
    FineTuneBackend,
    FineTuneJob,
    FineTuneManager,
    JobSnapshot,
    JobStatus,
    OpenAIFineTuneBackend,
    normalize_status,
)
from .versions import ModelVersion, VersionRegistry

__all__ = [
    "FineTuneBackend",
    "FineTuneJob",
    "FineTuneManager",
    "JobSnapshot",
    "JobStatus",
    "ModelVersion",
    "OpenAIFineTuneBackend",
    "VersionRegistry",
    "normalize_status",
]
