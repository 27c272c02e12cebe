"""Discord notification handler using webhooks."""

from __future__ import annotations

import os
from typing import Optional

import requests

from ..logging_config import get_logger
from .base import NotificationEvent, NotificationHandler, NotificationLevel

logger = get_logger(__name__)

COLORS = {
    NotificationLevel.INFO: 0x0099FF,
    NotificationLevel.SUCCESS: 0x36A64F,
    NotificationLevel.WARNING: 0xFF9900,
    NotificationLevel.ERROR: 0xFF0000,
}


class DiscordNotifier(NotificationHandler):
    """Send notifications to Discord via webhooks."""

    def __init__(self, webhook_url: Optional[str] = None, username: str = "feedloop"):
        self.webhook_url = webhook_url or os.getenv("DISCORD_WEBHOOK_URL")
        self.username = username

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def send(self, event: NotificationEvent) -> bool:
        if not self.is_configured():
            logger.warning("Discord notifier not configured")
            return False

        try:
            response = requests.post(self.webhook_url, json=self._create_payload(event), timeout=10)
        except requests.Timeout:
            logger.error("Discord notification timeout")
            return False
        except requests.RequestException as e:
            logger.error(f"Failed to send Discord notification: {e}")
            return False

        # Discord answers 204 on success
        if response.status_code not in (200, 204):
            logger.error(f"Failed to send Discord notification: {response.status_code}")
            return False
        logger.debug(f"Discord notification sent: {event.title}")
        return True

    def _create_payload(self, event: NotificationEvent) -> dict:
        fields = []
        if event.model_name:
            fields.append({"name": "Model", "value": event.model_name, "inline": True})
        if event.batch_id:
            fields.append({"name": "Batch", "value": event.batch_id, "inline": True})
        if event.job_id:
            fields.append({"name": "Job", "value": event.job_id, "inline": True})
        for key, value in event.metrics.items():
            fields.append({"name": key, "value": str(value), "inline": True})
        if event.error_details:
            fields.append({"name": "Error", "value": f"```{event.error_details[:1000]}```", "inline": False})

        return {
            "username": self.username,
            "embeds": [
                {
                    "title": event.title,
                    "description": event.message,
                    "color": COLORS.get(event.level, 0x0099FF),
                    "fields": fields,
                    "timestamp": event.timestamp.isoformat(),
                }
            ],
        }
