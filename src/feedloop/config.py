"""Config loader for feedloop."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .schema import FeedloopConfig


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def _apply_env_overrides(config_data: dict[str, Any]) -> None:
    experiment = config_data.setdefault("experiment", {})

    enabled = os.environ.get("FEEDLOOP_AB_TEST_ENABLED")
    if enabled is not None:
        experiment["enabled"] = _parse_bool(enabled)

    split = os.environ.get("FEEDLOOP_AB_TRAFFIC_SPLIT")
    if split is not None:
        try:
            experiment["traffic_split_percent"] = int(split)
        except ValueError as e:
            raise ConfigError(f"FEEDLOOP_AB_TRAFFIC_SPLIT must be an integer: {split!r}") from e

    candidate = os.environ.get("FEEDLOOP_CANDIDATE_MODEL")
    if candidate:
        experiment["candidate_model"] = candidate

    notifications = config_data.setdefault("notifications", {})
    if os.environ.get("SLACK_WEBHOOK_URL") and not notifications.get("slack_webhook_url"):
        notifications["slack_webhook_url"] = os.environ["SLACK_WEBHOOK_URL"]
    if os.environ.get("DISCORD_WEBHOOK_URL") and not notifications.get("discord_webhook_url"):
        notifications["discord_webhook_url"] = os.environ["DISCORD_WEBHOOK_URL"]


def load_config(config_path: Path | None = None, merge_user: bool = True) -> dict[str, Any]:
    """Load configuration with user < local < explicit precedence, then env overrides."""
    env_config = os.environ.get("FEEDLOOP_CONFIG_PATH")
    if config_path is None and env_config:
        config_path = Path(env_config).expanduser()

    config_data: dict[str, Any] = {}

    if merge_user:
        user_path = Path.home() / ".config" / "feedloop" / "config.toml"
        if user_path.exists():
            config_data = _deep_merge(config_data, _read_toml(user_path))

    local_path = Path("feedloop.toml")
    if local_path.exists():
        config_data = _deep_merge(config_data, _read_toml(local_path))

    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        config_data = _deep_merge(config_data, _read_toml(config_path))

    _apply_env_overrides(config_data)
    return config_data


def load_config_model(
    config_path: Path | None = None,
    merge_user: bool = True,
) -> FeedloopConfig:
    """Load configuration and return a typed model."""
    return FeedloopConfig.from_dict(load_config(config_path=config_path, merge_user=merge_user))
