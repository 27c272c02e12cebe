"""Tests for configuration loading."""

from pathlib import Path

import pytest

from feedloop.config import load_config, load_config_model
from feedloop.errors import ConfigError


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in (
        "FEEDLOOP_CONFIG_PATH",
        "FEEDLOOP_AB_TEST_ENABLED",
        "FEEDLOOP_AB_TRAFFIC_SPLIT",
        "FEEDLOOP_CANDIDATE_MODEL",
        "SLACK_WEBHOOK_URL",
        "DISCORD_WEBHOOK_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = load_config_model(merge_user=False)
    assert config.batch.limit == 50
    assert config.batch.throttle_seconds == 1.0
    assert config.experiment.enabled is False
    assert config.drift.min_samples_per_arm == 1000
    assert config.export_dir == config.general.data_dir / "training_data"


def test_explicit_path_overrides_local(tmp_path) -> None:
    (tmp_path / "feedloop.toml").write_text("[batch]\nlimit = 10\nthrottle_seconds = 2.0\n")
    explicit = tmp_path / "override.toml"
    explicit.write_text(
        f'[general]\ndata_dir = "{tmp_path / "data"}"\n\n[batch]\nlimit = 25\n\n[experiment]\ntraffic_split_percent = 30\n'
    )

    config = load_config_model(explicit, merge_user=False)

    assert config.batch.limit == 25
    assert config.batch.throttle_seconds == 2.0
    assert config.experiment.traffic_split_percent == 30
    assert config.general.db_path == (tmp_path / "data").resolve() / "feedloop.db"


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("FEEDLOOP_AB_TEST_ENABLED", "true")
    monkeypatch.setenv("FEEDLOOP_AB_TRAFFIC_SPLIT", "20")
    monkeypatch.setenv("FEEDLOOP_CANDIDATE_MODEL", "ft:gpt-4o-mini:acme:v4")
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/x")

    config = load_config_model(merge_user=False)

    assert config.experiment.enabled is True
    assert config.experiment.traffic_split_percent == 20
    assert config.experiment.candidate_model == "ft:gpt-4o-mini:acme:v4"
    assert config.notifications.slack_webhook_url == "https://hooks.slack.test/x"


def test_env_config_path(tmp_path, monkeypatch) -> None:
    path = tmp_path / "env.toml"
    path.write_text("[drift]\nlookback_weeks = 8\n")
    monkeypatch.setenv("FEEDLOOP_CONFIG_PATH", str(path))
    assert load_config_model(merge_user=False).drift.lookback_weeks == 8


def test_missing_explicit_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.toml", merge_user=False)


def test_invalid_toml(tmp_path) -> None:
    path = tmp_path / "broken.toml"
    path.write_text("[batch\nlimit = ")
    with pytest.raises(ConfigError):
        load_config(path, merge_user=False)


def test_invalid_split_env(monkeypatch) -> None:
    monkeypatch.setenv("FEEDLOOP_AB_TRAFFIC_SPLIT", "half")
    with pytest.raises(ConfigError):
        load_config(merge_user=False)


def test_unknown_keys_ignored(tmp_path) -> None:
    path = tmp_path / "extra.toml"
    path.write_text("[batch]\nlimit = 5\nturbo = true\n\n[unknown]\nx = 1\n")
    assert load_config_model(Path(path), merge_user=False).batch.limit == 5
