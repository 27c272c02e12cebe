"""Slack notification handler using webhooks."""

from __future__ import annotations

import os
from typing import Optional

import requests

from ..logging_config import get_logger
from .base import NotificationEvent, NotificationHandler, NotificationLevel

logger = get_logger(__name__)

COLORS = {
    NotificationLevel.INFO: "#0099ff",
    NotificationLevel.SUCCESS: "#36a64f",
    NotificationLevel.WARNING: "#ff9900",
    NotificationLevel.ERROR: "#ff0000",
}


class SlackNotifier(NotificationHandler):
    """Send notifications to Slack via webhooks."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        username: str = "feedloop",
    ):
        self.webhook_url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")
        self.channel = channel or os.getenv("SLACK_CHANNEL")
        self.username = username

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def send(self, event: NotificationEvent) -> bool:
        if not self.is_configured():
            logger.warning("Slack notifier not configured")
            return False

        try:
            response = requests.post(self.webhook_url, json=self._create_payload(event), timeout=10)
        except requests.Timeout:
            logger.error("Slack notification timeout")
            return False
        except requests.RequestException as e:
            logger.error(f"Failed to send Slack notification: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Failed to send Slack notification: {response.status_code}")
            return False
        logger.debug(f"Slack notification sent: {event.title}")
        return True

    def _create_payload(self, event: NotificationEvent) -> dict:
        fields = []
        if event.model_name:
            fields.append({"title": "Model", "value": event.model_name, "short": True})
        if event.batch_id:
            fields.append({"title": "Batch", "value": event.batch_id, "short": True})
        if event.job_id:
            fields.append({"title": "Job", "value": event.job_id, "short": True})
        for key, value in event.metrics.items():
            fields.append({"title": key, "value": str(value), "short": True})
        if event.error_details:
            fields.append({"title": "Error", "value": f"```{event.error_details}```", "short": False})

        payload = {
            "username": self.username,
            "attachments": [
                {
                    "color": COLORS.get(event.level, "#0099ff"),
                    "title": event.title,
                    "text": event.message,
                    "fields": fields,
                    "ts": int(event.timestamp.timestamp()),
                }
            ],
        }
        if self.channel:
            payload["channel"] = self.channel
        return payload
