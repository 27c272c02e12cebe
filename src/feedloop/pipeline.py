"""Learning loop orchestrator.

Wires the stores, the improvement batch, export, drift monitoring, routing,
and the version registry from one FeedloopConfig. Each public method is an
independently triggered job; nothing here loops on its own.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from .config import load_config_model
from .errors import ExportIOFailure, FeedloopError, StorageUnavailable
from .export import CorpusExporter, ExportResult, ExportSelector
from .improvement import (
    BatchGuard,
    BatchResult,
    CorrectionGenerator,
    FailureProcessor,
    ImprovementLedger,
    ImprovementScorer,
    LLMJudge,
    PromptAdvisor,
    ReplyJudge,
)
from .logging_config import get_logger
from .monitoring import ABTestReport, ConfidenceDriftReport, DriftMonitor, Recommendation, WeeklyDropReport
from .notifications import (
    EventType,
    NotificationLevel,
    NotificationManager,
    build_notification_manager,
)
from .providers import CompletionClient, Throttle, get_client
from .registry import (
    FineTuneBackend,
    FineTuneJob,
    FineTuneManager,
    ModelVersion,
    OpenAIFineTuneBackend,
    VersionRegistry,
)
from .routing import ModelRouter
from .schema import FeedloopConfig
from .store import Database, FailureStore, ReplyLog, to_timestamp, utcnow

logger = get_logger(__name__)

MAX_STATUS_ERRORS = 20


@dataclass
class PipelineStatus:
    """Persisted summary of the most recent jobs."""

    last_batch: Optional[dict] = None
    last_export: Optional[dict] = None
    last_drift_check: Optional[str] = None
    total_batches: int = 0
    total_exports: int = 0
    errors: list[str] = field(default_factory=list)


class LearningPipeline:
    """Continuous learning loop, one job at a time."""

    def __init__(
        self,
        config: FeedloopConfig | None = None,
        client: CompletionClient | None = None,
        judge: ReplyJudge | None = None,
        notifications: NotificationManager | None = None,
        finetune_backend: FineTuneBackend | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or FeedloopConfig()
        self.clock = clock

        self.db = Database(self.config.general.db_path)
        self.failure_store = FailureStore(self.db, clock=clock)
        self.reply_log = ReplyLog(self.db, failure_store=self.failure_store, clock=clock)
        self.ledger = ImprovementLedger(self.db, clock=clock)

        provider = self.config.provider
        self.client = client or get_client(provider.provider, model=provider.model)
        self.throttle = Throttle(self.config.batch.throttle_seconds)

        judge_client = self.client.with_model(provider.judge_model) if provider.judge_model else self.client
        self.scorer = ImprovementScorer(
            judge or LLMJudge(judge_client, self.throttle, temperature=provider.judge_temperature)
        )
        self.generator = CorrectionGenerator(
            self.client,
            throttle=self.throttle,
            temperature=provider.correction_temperature,
            max_output_tokens=provider.max_output_tokens,
        )
        self.processor = FailureProcessor(
            self.failure_store,
            self.ledger,
            self.generator,
            self.scorer,
            guard=BatchGuard(self.db, lease_seconds=self.config.batch.lease_seconds, clock=clock),
            batch_limit=self.config.batch.limit,
            clock=clock,
        )

        self.exporter = CorpusExporter(
            self.db,
            self.config.export_dir,
            persona=self.config.export.persona,
            default_limit=self.config.export.default_limit,
            clock=clock,
        )
        self.drift_monitor = DriftMonitor(self.reply_log, self.config.drift, self.config.experiment, clock=clock)
        self.advisor = PromptAdvisor(self.ledger, self.client)
        self.router = ModelRouter(
            self.config.experiment,
            base_client=self.client.with_model(self.config.experiment.base_model),
            reply_log=self.reply_log,
            prompt_builder=self.advisor.build_prompt,
            persona=self.config.export.persona,
        )
        self.registry = VersionRegistry(self.db, clock=clock)
        self.notifications = notifications or build_notification_manager(self.config.notifications)
        self.finetune = FineTuneManager(
            self.db,
            finetune_backend or OpenAIFineTuneBackend(),
            self.registry,
            notifications=self.notifications,
            clock=clock,
        )

        self._status_file = self.config.general.data_dir / "pipeline_status.json"
        self.status = PipelineStatus()
        self._load_status()

    @classmethod
    def from_config(cls, config_path: Path | None = None, **kwargs: Any) -> "LearningPipeline":
        return cls(load_config_model(config_path), **kwargs)

    def reload(self, config: FeedloopConfig) -> None:
        """Apply a new experiment split without restarting."""
        self.config.experiment = config.experiment
        self.drift_monitor.experiment = config.experiment
        self.router.reload(config.experiment)

    # Improvement batch

    def run_improvement_batch(self, limit: int | None = None) -> BatchResult:
        return self._run_batch(self.processor.process_batch, limit)

    def force_reprocess(self, limit: int | None = None) -> BatchResult:
        return self._run_batch(self.processor.force_reprocess, limit)

    def _run_batch(self, job: Callable[[int | None], BatchResult], limit: int | None) -> BatchResult:
        try:
            result = job(limit)
        except StorageUnavailable as e:
            self._record_error(f"batch: {e}")
            self.notifications.notify(
                title="Improvement batch failed",
                message=str(e),
                event_type=EventType.BATCH_FAILED,
                level=NotificationLevel.ERROR,
                error_details=str(e),
            )
            raise

        if result.skipped_concurrent:
            return result

        self.status.last_batch = result.to_dict()
        self.status.total_batches += 1
        for error in result.errors:
            self._record_error(f"batch: {error}")
        self._save_status()

        if result.processed or result.failed:
            self.notifications.notify(
                title="Improvement batch completed",
                message=(
                    f"{result.processed} improvements, {result.duplicates} duplicates, "
                    f"{result.failed} failed of {result.candidates} candidates"
                ),
                event_type=EventType.BATCH_COMPLETED,
                level=NotificationLevel.WARNING if result.failed else NotificationLevel.SUCCESS,
                metrics={"processed": result.processed, "failed": result.failed},
            )
        return result

    # Export

    def export(self, selector: ExportSelector | None = None) -> ExportResult:
        try:
            result = self.exporter.export_batch(selector)
        except ExportIOFailure as e:
            self._record_error(f"export: {e}")
            self.notifications.notify(
                title="Training corpus export failed",
                message=str(e),
                event_type=EventType.EXPORT_FAILED,
                level=NotificationLevel.ERROR,
                error_details=str(e),
            )
            raise

        if result.example_count:
            self.status.last_export = result.to_dict()
            self.status.total_exports += 1
            self._save_status()
            self.notifications.notify_export_completed(result.batch_id, result.example_count, str(result.path))
        return result

    # Drift

    def check_drift_and_export(self, lookback_weeks: int | None = None) -> tuple[WeeklyDropReport, Optional[ExportResult]]:
        """Export high-gain improvements from weeks where usefulness dropped."""
        report = self.drift_monitor.weekly_performance_drops(lookback_weeks)
        self.status.last_drift_check = to_timestamp(self.clock())
        self._save_status()

        if not report.auto_training_recommended:
            logger.info("No usefulness drops detected")
            return report, None

        self.notifications.notify_performance_drop(
            len(report.drops),
            max(d.drop_percentage for d in report.drops),
            report.training_data_count,
        )
        selector = ExportSelector(
            min_score_gain=self.config.export.drift_export_min_gain,
            created_after=min(d.start for d in report.drops),
            created_before=max(d.end for d in report.drops),
            include_exported=True,
        )
        return report, self.export(selector)

    def check_confidence_drift(self, days: int | None = None) -> ConfidenceDriftReport:
        report = self.drift_monitor.confidence_drift(days)
        if report.current_alert:
            worst = max(report.daily_drift, key=lambda d: abs(d.drift))
            self.notifications.notify(
                title="Confidence drift alert",
                message=f"Confidence drifted {worst.drift:+.3f} on {worst.day} (trend: {report.overall_trend.value})",
                event_type=EventType.CONFIDENCE_DRIFT,
                level=NotificationLevel.WARNING,
                metrics={"days": len(report.daily_drift)},
            )
        return report

    def check_ab_test(self) -> ABTestReport:
        report = self.drift_monitor.ab_test_results()
        if report.recommendation != Recommendation.CONTINUE_TEST:
            self.notifications.notify(
                title=f"A/B recommendation: {report.recommendation.value}",
                message=(
                    f"Candidate {report.candidate.success_rate:.3f} vs base {report.base.success_rate:.3f}. "
                    "Promotion is a manual action."
                ),
                event_type=EventType.AB_RECOMMENDATION,
                model_name=report.candidate.name,
                metrics={"base_n": report.base.sample_size, "candidate_n": report.candidate.sample_size},
            )
        return report

    # Versions

    def promote(self, id_or_tag: str) -> ModelVersion:
        version = self.registry.promote(id_or_tag)
        self.notifications.notify(
            title=f"Model version promoted: {version.version_tag}",
            message=f"{version.fine_tune_artifact_id} is now active",
            event_type=EventType.VERSION_PROMOTED,
            level=NotificationLevel.SUCCESS,
            model_name=version.fine_tune_artifact_id,
        )
        return version

    def rollback(self, id_or_tag: str | None = None) -> ModelVersion:
        version = self.registry.rollback(id_or_tag)
        self.notifications.notify(
            title=f"Model version rolled back to {version.version_tag}",
            message=f"{version.fine_tune_artifact_id} is active again",
            event_type=EventType.VERSION_ROLLED_BACK,
            level=NotificationLevel.WARNING,
            model_name=version.fine_tune_artifact_id,
        )
        return version

    def submit_finetune(self, batch_id: str, base_model: str | None = None, suffix: str | None = None) -> FineTuneJob:
        export = self.exporter.get_batch(batch_id)
        if export is None:
            raise FeedloopError(f"Unknown export batch: {batch_id}")
        return self.finetune.submit(export, base_model or self.config.experiment.base_model, suffix=suffix)

    # Status

    def status_summary(self) -> dict:
        active = self.registry.active_version()
        return {
            "status": asdict(self.status),
            "failures": self.failure_store.count(),
            "ledger": self.ledger.statistics().to_dict(),
            "batch_running": self.processor.guard.running,
            "experiment": {
                "enabled": self.config.experiment.enabled,
                "traffic_split_percent": self.config.experiment.traffic_split_percent,
                "base_model": self.config.experiment.base_model,
                "candidate_model": self.config.experiment.candidate_model,
            },
            "active_version": active.to_dict() if active else None,
        }

    def _record_error(self, message: str) -> None:
        self.status.errors.append(f"{to_timestamp(self.clock())} {message}")
        self.status.errors = self.status.errors[-MAX_STATUS_ERRORS:]
        self._save_status()

    def _save_status(self) -> None:
        try:
            self._status_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._status_file, "w") as f:
                json.dump(asdict(self.status), f, indent=2, default=str)
        except OSError as e:
            logger.warning(f"Failed to save pipeline status: {e}")

    def _load_status(self) -> None:
        if not self._status_file.exists():
            return
        try:
            with open(self._status_file) as f:
                self.status = PipelineStatus(**json.load(f))
        except (OSError, json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Failed to load pipeline status: {e}")
