"""Notification channels for learning loop events."""

from __future__ import annotations

from ..schema import NotificationConfig
from .base import (
    EventType,
    LogNotifier,
    NotificationEvent,
    NotificationHandler,
    NotificationLevel,
    NotificationManager,
)
from .discord import DiscordNotifier
from .slack import SlackNotifier


def build_notification_manager(config: NotificationConfig | None = None) -> NotificationManager:
    """Manager with every channel the config enables."""
    config = config or NotificationConfig()
    manager = NotificationManager()
    if config.log_events:
        manager.register_handler("log", LogNotifier())
    if config.slack_webhook_url:
        manager.register_handler("slack", SlackNotifier(config.slack_webhook_url, config.slack_channel))
    if config.discord_webhook_url:
        manager.register_handler("discord", DiscordNotifier(config.discord_webhook_url))
    return manager


__all__ = [
    "DiscordNotifier",
    "EventType",
    "LogNotifier",
    "NotificationEvent",
    "NotificationHandler",
    "NotificationLevel",
    "NotificationManager",
    "SlackNotifier",
    "build_notification_manager",
]
