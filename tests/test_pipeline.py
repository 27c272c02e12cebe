"""End-to-end tests for the learning loop orchestrator."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from feedloop.errors import RegistryError
from feedloop.improvement import HeuristicJudge
from feedloop.notifications import EventType, NotificationManager
from feedloop.pipeline import LearningPipeline
from feedloop.schema import FeedloopConfig, GeneralConfig

MONDAY = datetime(2024, 3, 4, tzinfo=timezone.utc)


def _correct(system_instruction, user_prompt):
    bad = user_prompt.split('AI Reply:\n"', 1)[1].split('"', 1)[0]
    return f"I'm sorry about that. I will fix '{bad}' for you today."


@pytest.fixture
def config(tmp_path):
    config = FeedloopConfig(general=GeneralConfig(data_dir=tmp_path / "data"))
    config.batch.throttle_seconds = 0.0
    return config


@pytest.fixture
def notifications():
    return MagicMock(spec=NotificationManager)


@pytest.fixture
def pipeline(config, notifications, scripted_client, clock):
    clock.now = MONDAY + timedelta(days=2)
    return LearningPipeline(
        config,
        client=scripted_client(_correct),
        judge=HeuristicJudge(),
        notifications=notifications,
        finetune_backend=MagicMock(),
        clock=clock,
    )


def _sent_events(notifications):
    return [call.kwargs.get("event_type") for call in notifications.notify.call_args_list]


class TestLearningPipeline:
    def test_batch_then_export(self, pipeline, notifications):
        pipeline.failure_store.record_failure("Where is my order?", "Wait.", "too generic")
        pipeline.failure_store.record_failure("Refund please", "No.", "cold and dismissive")

        batch = pipeline.run_improvement_batch()
        export = pipeline.export()

        assert batch.processed == 2
        assert export.example_count == 2
        assert export.path.exists()
        assert EventType.BATCH_COMPLETED in _sent_events(notifications)
        notifications.notify_export_completed.assert_called_once_with(export.batch_id, 2, str(export.path))

        assert pipeline.status.total_batches == 1
        assert pipeline.status.total_exports == 1

    def test_status_persists_across_instances(self, pipeline, config, notifications, scripted_client, clock):
        pipeline.failure_store.record_failure("m", "Wait.", "too generic")
        pipeline.run_improvement_batch()

        saved = json.loads((config.general.data_dir / "pipeline_status.json").read_text())
        assert saved["total_batches"] == 1

        again = LearningPipeline(
            config,
            client=scripted_client(_correct),
            judge=HeuristicJudge(),
            notifications=notifications,
            finetune_backend=MagicMock(),
            clock=clock,
        )
        assert again.status.total_batches == 1
        assert again.status.last_batch["processed"] == 1

    def test_empty_export_is_not_announced(self, pipeline, notifications):
        result = pipeline.export()

        assert result.example_count == 0
        assert result.path is None
        notifications.notify_export_completed.assert_not_called()
        assert pipeline.status.total_exports == 0

    def test_drift_triggers_export(self, pipeline, notifications):
        log = pipeline.reply_log
        for week, useful in ((MONDAY - timedelta(weeks=1), 8), (MONDAY, 4)):
            for i in range(10):
                log.log_reply(f"u{i}", "gpt-4o", False, "m", "r", 0.7, useful=i < useful, created_at=week + timedelta(hours=i))
        pipeline.failure_store.record_failure("m", "Wait.", "too generic")
        pipeline.run_improvement_batch()

        report, export = pipeline.check_drift_and_export(lookback_weeks=4)

        assert len(report.drops) == 1
        assert export is not None
        assert export.example_count == 1
        notifications.notify_performance_drop.assert_called_once()
        assert pipeline.status.last_drift_check is not None

    def test_no_drift_no_export(self, pipeline, notifications):
        report, export = pipeline.check_drift_and_export()

        assert report.drops == []
        assert export is None
        notifications.notify_performance_drop.assert_not_called()

    def test_promote_and_rollback(self, pipeline, notifications, clock):
        pipeline.registry.register("ft:gpt-4o-mini:acme:a", "gpt-4o-mini")
        pipeline.registry.register("ft:gpt-4o-mini:acme:b", "gpt-4o-mini")

        pipeline.promote("v1")
        clock.advance(minutes=5)
        pipeline.promote("v2")
        restored = pipeline.rollback()

        assert restored.version_tag == "v1"
        assert pipeline.registry.active_version().version_tag == "v1"
        events = _sent_events(notifications)
        assert events.count(EventType.VERSION_PROMOTED) == 2
        assert EventType.VERSION_ROLLED_BACK in events

    def test_rollback_without_history(self, pipeline):
        with pytest.raises(RegistryError):
            pipeline.rollback()

    def test_status_summary(self, pipeline):
        pipeline.failure_store.record_failure("m", "Wait.", "too generic")

        summary = pipeline.status_summary()

        assert summary["failures"] == 1
        assert summary["batch_running"] is False
        assert summary["experiment"]["enabled"] is False
        assert summary["active_version"] is None

    def test_reload_changes_split(self, pipeline, config):
        updated = FeedloopConfig()
        updated.experiment.enabled = True
        updated.experiment.traffic_split_percent = 100

        pipeline.reload(updated)

        assert pipeline.router.assign("anyone").is_candidate
