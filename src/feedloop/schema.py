"""Configuration schema for feedloop."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_PERSONA = (
    "You are an elite customer service assistant. Provide empathetic, accurate, "
    "and actionable responses to customer inquiries."
)


def _as_path(value: str | Path) -> Path:
    return value if isinstance(value, Path) else Path(value).expanduser().resolve()


def _pick(cls, data: dict[str, Any] | None) -> dict[str, Any]:
    if not data:
        return {}
    known = set(cls.__dataclass_fields__)
    return {k: v for k, v in data.items() if k in known}


@dataclass
class GeneralConfig:
    data_dir: Path = field(default_factory=lambda: Path.home() / ".feedloop")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "feedloop.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GeneralConfig":
        kwargs = _pick(cls, data)
        if "data_dir" in kwargs:
            kwargs["data_dir"] = _as_path(kwargs["data_dir"])
        return cls(**kwargs)


@dataclass
class ProviderConfig:
    provider: str = "openai"
    model: str = "gpt-4o"
    judge_model: str | None = None
    correction_temperature: float = 0.3
    judge_temperature: float = 0.1
    max_output_tokens: int = 1024

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ProviderConfig":
        return cls(**_pick(cls, data))


@dataclass
class BatchConfig:
    limit: int = 50
    throttle_seconds: float = 1.0
    lease_seconds: float = 3600.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BatchConfig":
        return cls(**_pick(cls, data))


@dataclass
class ExperimentConfig:
    """Live traffic split between the base and a candidate model."""

    enabled: bool = False
    traffic_split_percent: int = 50
    base_model: str = "gpt-4o"
    candidate_model: str = "ft:gpt-3.5-turbo:feedloop:v2-1"
    hash_version: int = 1
    reply_temperature: float = 0.3
    reply_max_tokens: int = 300

    def __post_init__(self) -> None:
        self.traffic_split_percent = max(0, min(100, int(self.traffic_split_percent)))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExperimentConfig":
        return cls(**_pick(cls, data))


@dataclass
class DriftConfig:
    weekly_drop_threshold_pct: float = 20.0
    lookback_weeks: int = 4
    confidence_window_days: int = 30
    confidence_alert_threshold: float = 0.2
    trend_threshold: float = 0.05
    min_samples_per_arm: int = 1000
    promotion_margin: float = 0.05

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DriftConfig":
        return cls(**_pick(cls, data))


@dataclass
class ExportConfig:
    output_dir: Path | None = None
    persona: str = DEFAULT_PERSONA
    default_limit: int = 1000
    drift_export_min_gain: float = 2.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExportConfig":
        kwargs = _pick(cls, data)
        if kwargs.get("output_dir"):
            kwargs["output_dir"] = _as_path(kwargs["output_dir"])
        return cls(**kwargs)


@dataclass
class NotificationConfig:
    slack_webhook_url: str | None = None
    slack_channel: str | None = None
    discord_webhook_url: str | None = None
    log_events: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NotificationConfig":
        return cls(**_pick(cls, data))


@dataclass
class FeedloopConfig:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    experiment: ExperimentConfig = field(default_factory=ExperimentConfig)
    drift: DriftConfig = field(default_factory=DriftConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    @property
    def export_dir(self) -> Path:
        return self.export.output_dir or self.general.data_dir / "training_data"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FeedloopConfig":
        data = data or {}
        return cls(
            general=GeneralConfig.from_dict(data.get("general")),
            provider=ProviderConfig.from_dict(data.get("provider")),
            batch=BatchConfig.from_dict(data.get("batch")),
            experiment=ExperimentConfig.from_dict(data.get("experiment")),
            drift=DriftConfig.from_dict(data.get("drift")),
            export=ExportConfig.from_dict(data.get("export")),
            notifications=NotificationConfig.from_dict(data.get("notifications")),
        )
