"""Base notification classes and event types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..logging_config import get_logger
from ..store.database import utcnow

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    """Notification severity levels."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class EventType(str, Enum):
    """Learning loop events that trigger notifications."""

    # Improvement batches
    BATCH_COMPLETED = "batch_completed"
    BATCH_FAILED = "batch_failed"

    # Export
    EXPORT_COMPLETED = "export_completed"
    EXPORT_FAILED = "export_failed"

    # Drift
    PERFORMANCE_DROP = "performance_drop"
    CONFIDENCE_DRIFT = "confidence_drift"
    AB_RECOMMENDATION = "ab_recommendation"

    # Fine-tuning
    FINETUNE_SUBMITTED = "finetune_submitted"
    FINETUNE_SUCCEEDED = "finetune_succeeded"
    FINETUNE_FAILED = "finetune_failed"

    # Registry
    VERSION_PROMOTED = "version_promoted"
    VERSION_ROLLED_BACK = "version_rolled_back"

    ERROR_OCCURRED = "error_occurred"


@dataclass
class NotificationEvent:
    """Structured notification event."""

    event_type: EventType
    title: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    timestamp: datetime = field(default_factory=utcnow)

    # Optional context
    model_name: Optional[str] = None
    batch_id: Optional[str] = None
    job_id: Optional[str] = None
    metrics: dict[str, Any] = field(default_factory=dict)
    error_details: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["level"] = self.level.value
        data["timestamp"] = self.timestamp.isoformat()
        return data

    def __str__(self) -> str:
        return f"[{self.level.value.upper()}] {self.title}: {self.message}"


class NotificationHandler(ABC):
    """Base class for notification handlers."""

    @abstractmethod
    def send(self, event: NotificationEvent) -> bool:
        """Send notification for event.

        Returns:
            True if successful, False otherwise
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if handler is properly configured."""


class LogNotifier(NotificationHandler):
    """Writes events to the feedloop log."""

    _levels = {
        NotificationLevel.INFO: "info",
        NotificationLevel.SUCCESS: "info",
        NotificationLevel.WARNING: "warning",
        NotificationLevel.ERROR: "error",
    }

    def is_configured(self) -> bool:
        return True

    def send(self, event: NotificationEvent) -> bool:
        log = getattr(logger, self._levels.get(event.level, "info"))
        log(str(event), extra={"event": event.to_dict()})
        return True


class NotificationManager:
    """Fans events out to every configured channel.

    Delivery is best-effort: a failing channel is logged and never breaks the
    batch job that raised the event.
    """

    def __init__(self):
        self.handlers: dict[str, NotificationHandler] = {}
        self.enabled_channels: set[str] = set()

    def register_handler(self, name: str, handler: NotificationHandler) -> None:
        self.handlers[name] = handler
        if handler.is_configured():
            self.enabled_channels.add(name)
            logger.info(f"Registered notification handler: {name}")
        else:
            logger.warning(f"Handler {name} not properly configured, skipping")

    def notify(
        self,
        title: str,
        message: str,
        event_type: EventType | str = EventType.ERROR_OCCURRED,
        level: NotificationLevel = NotificationLevel.INFO,
        **kwargs,
    ) -> bool:
        """Send notification to all enabled channels.

        Args:
            title: Notification title
            message: Notification message
            event_type: Type of event
            level: Notification level
            **kwargs: Additional event context (model_name, batch_id, metrics, etc.)

        Returns:
            True if sent to at least one channel
        """
        if isinstance(event_type, str) and not isinstance(event_type, EventType):
            try:
                event_type = EventType(event_type.lower())
            except ValueError:
                event_type = EventType.ERROR_OCCURRED

        try:
            event = NotificationEvent(
                event_type=event_type,
                title=title,
                message=message,
                level=level,
                **kwargs,
            )
        except TypeError as e:
            logger.error(f"Invalid notification {title!r}: {e}")
            return False
        return self.send_event(event)

    def send_event(self, event: NotificationEvent) -> bool:
        if not self.enabled_channels:
            logger.debug(f"No notification channels enabled, dropping: {event}")
            return False

        sent_count = 0
        for channel in sorted(self.enabled_channels):
            handler = self.handlers[channel]
            try:
                if handler.send(event):
                    sent_count += 1
            except Exception as e:
                logger.error(f"Failed to send notification via {channel}: {e}", exc_info=True)
        return sent_count > 0

    def notify_export_completed(self, batch_id: str, example_count: int, path: str) -> bool:
        return self.notify(
            title=f"Training corpus exported: {batch_id}",
            message=f"{example_count} examples written to {path}",
            event_type=EventType.EXPORT_COMPLETED,
            level=NotificationLevel.SUCCESS,
            batch_id=batch_id,
            metrics={"example_count": example_count},
        )

    def notify_performance_drop(self, drop_count: int, worst_drop_pct: float, training_data_count: int) -> bool:
        return self.notify(
            title="Usefulness drop detected",
            message=(
                f"{drop_count} week(s) dropped more than the threshold "
                f"(worst: {worst_drop_pct:.2f}%). Retraining recommended."
            ),
            event_type=EventType.PERFORMANCE_DROP,
            level=NotificationLevel.WARNING,
            metrics={"drop_count": drop_count, "training_data_count": training_data_count},
        )

    def notify_finetune_finished(
        self,
        job_id: str,
        succeeded: bool,
        model_name: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        if succeeded:
            return self.notify(
                title=f"Fine-tune succeeded: {model_name}",
                message=f"Job {job_id} produced {model_name}",
                event_type=EventType.FINETUNE_SUCCEEDED,
                level=NotificationLevel.SUCCESS,
                model_name=model_name,
                job_id=job_id,
            )
        return self.notify(
            title=f"Fine-tune failed: {job_id}",
            message=f"Job {job_id} did not complete: {error or 'unknown error'}",
            event_type=EventType.FINETUNE_FAILED,
            level=NotificationLevel.ERROR,
            job_id=job_id,
            error_details=error,
        )
