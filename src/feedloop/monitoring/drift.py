"""Drift detection and promotion recommendations.

Everything here is read-only and advisory. Nothing in this module changes the
experiment split or the active model version; promotion is a separate,
explicit registry action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction
from statistics import fmean
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from ..logging_config import get_logger
from ..schema import DriftConfig, ExperimentConfig
from ..store.database import to_timestamp, utcnow
from ..store.replies import ReplyLog, ReplyRecord

logger = get_logger(__name__)


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class Recommendation(str, Enum):
    CONTINUE_TEST = "continue_test"
    DEPLOY_CANDIDATE = "deploy_candidate"
    ROLLBACK_TO_BASE = "rollback_to_base"


@dataclass
class WeeklyWindow:
    """Aggregates for one Monday-aligned UTC week."""

    start: datetime
    end: datetime
    reply_count: int = 0
    rated_count: int = 0
    useful_count: int = 0
    avg_confidence: float = 0.0

    @property
    def usefulness_rate(self) -> Optional[float]:
        if self.rated_count == 0:
            return None
        return self.useful_count / self.rated_count


@dataclass
class DropPeriod:
    start: datetime
    end: datetime
    drop_percentage: float
    affected_replies: int
    avg_confidence: float
    previous_rate: float
    current_rate: float

    def to_dict(self) -> dict:
        return {
            "start": to_timestamp(self.start),
            "end": to_timestamp(self.end),
            "drop_percentage": self.drop_percentage,
            "affected_replies": self.affected_replies,
            "avg_confidence": self.avg_confidence,
            "previous_rate": self.previous_rate,
            "current_rate": self.current_rate,
        }


@dataclass
class WeeklyDropReport:
    drops: list[DropPeriod] = field(default_factory=list)
    auto_training_recommended: bool = False
    training_data_count: int = 0
    windows: list[WeeklyWindow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "drops": [d.to_dict() for d in self.drops],
            "auto_training_recommended": self.auto_training_recommended,
            "training_data_count": self.training_data_count,
            "weeks_analyzed": len(self.windows),
        }


@dataclass
class DriftMetric:
    day: date
    avg_confidence: float
    reply_count: int
    drift: float

    def to_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "avg_confidence": self.avg_confidence,
            "reply_count": self.reply_count,
            "drift": self.drift,
        }


@dataclass
class ConfidenceDriftReport:
    daily_drift: list[DriftMetric] = field(default_factory=list)
    overall_trend: Trend = Trend.STABLE
    alert_threshold: float = 0.2
    current_alert: bool = False
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "daily_drift": [d.to_dict() for d in self.daily_drift],
            "overall_trend": self.overall_trend.value,
            "alert_threshold": self.alert_threshold,
            "current_alert": self.current_alert,
            "recommendations": list(self.recommendations),
        }


@dataclass
class ArmStats:
    name: str
    sample_size: int = 0
    useful_count: int = 0
    avg_confidence: float = 0.0
    avg_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.useful_count / self.sample_size if self.sample_size else 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "sample_size": self.sample_size,
            "success_rate": round(self.success_rate, 4),
            "avg_confidence": self.avg_confidence,
            "avg_latency_ms": self.avg_latency_ms,
        }


@dataclass
class ABTestReport:
    test_running: bool
    base: ArmStats
    candidate: ArmStats
    statistically_significant: bool
    recommendation: Recommendation
    min_samples_per_arm: int
    promotion_margin: float

    def to_dict(self) -> dict:
        return {
            "test_running": self.test_running,
            "base": self.base.to_dict(),
            "candidate": self.candidate.to_dict(),
            "statistically_significant": self.statistically_significant,
            "recommendation": self.recommendation.value,
            "min_samples_per_arm": self.min_samples_per_arm,
            "promotion_margin": self.promotion_margin,
        }


def week_start(moment: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing ``moment``."""
    moment = moment.astimezone(timezone.utc)
    monday = moment.date() - timedelta(days=moment.weekday())
    return datetime.combine(monday, time.min, tzinfo=timezone.utc)


def find_performance_drops(
    windows: list[WeeklyWindow],
    threshold_pct: float = 20.0,
) -> WeeklyDropReport:
    """Compare each week's usefulness rate to the prior week's.

    ``windows`` is ordered oldest first. Weeks without rated replies are
    skipped, so each week is compared to the nearest earlier week with data.
    A week is a drop when the relative decline strictly exceeds
    ``threshold_pct``. Rates are compared as exact fractions of the counts.
    """
    report = WeeklyDropReport(windows=list(windows))
    threshold = Fraction(str(threshold_pct))
    rated = [w for w in windows if w.rated_count]

    for previous, current in zip(rated, rated[1:]):
        previous_rate = Fraction(previous.useful_count, previous.rated_count)
        current_rate = Fraction(current.useful_count, current.rated_count)
        if not previous_rate:
            continue

        drop_pct = (previous_rate - current_rate) / previous_rate * 100
        if drop_pct > threshold:
            report.drops.append(
                DropPeriod(
                    start=current.start,
                    end=current.end,
                    drop_percentage=round(float(drop_pct), 2),
                    affected_replies=current.reply_count,
                    avg_confidence=current.avg_confidence,
                    previous_rate=round(float(previous_rate), 4),
                    current_rate=round(float(current_rate), 4),
                )
            )
            report.training_data_count += current.reply_count

    report.auto_training_recommended = bool(report.drops)
    return report


def _mean(values: list[float]) -> float:
    return fmean(values) if values else 0.0


def compute_confidence_drift(
    daily: list[tuple[date, float, int]],
    alert_threshold: float = 0.2,
    trend_threshold: float = 0.05,
) -> ConfidenceDriftReport:
    """Drift of each day's average confidence against the first day.

    ``daily`` holds (day, avg_confidence, reply_count) ordered oldest first.
    """
    report = ConfidenceDriftReport(alert_threshold=alert_threshold)
    if not daily:
        report.recommendations.append("No replies in the window")
        return report

    baseline = daily[0][1]
    report.daily_drift = [
        DriftMetric(
            day=day,
            avg_confidence=round(avg, 3),
            reply_count=count,
            drift=round(avg - baseline, 3),
        )
        for day, avg, count in daily
    ]

    if len(report.daily_drift) > 1:
        first_week = _mean([d.avg_confidence for d in report.daily_drift[:7]])
        last_week = _mean([d.avg_confidence for d in report.daily_drift[-7:]])
        change = round(last_week - first_week, 9)
        if change > trend_threshold:
            report.overall_trend = Trend.IMPROVING
        elif change < -trend_threshold:
            report.overall_trend = Trend.DECLINING

    report.current_alert = any(abs(d.drift) > alert_threshold for d in report.daily_drift)

    if report.overall_trend == Trend.DECLINING:
        report.recommendations.append("Consider retraining with recent high-quality examples")
        report.recommendations.append("Review low-confidence replies for common patterns")
    if report.current_alert:
        report.recommendations.append("Confidence drift exceeds threshold, investigate immediately")
        report.recommendations.append("Check recent changes in training data or model parameters")
    if report.overall_trend == Trend.STABLE and not report.current_alert:
        report.recommendations.append("System performing within normal parameters")

    return report


def decide_recommendation(
    base: ArmStats,
    candidate: ArmStats,
    min_samples: int = 1000,
    margin: float = 0.05,
) -> tuple[bool, Recommendation]:
    """(significant, recommendation) for two experiment arms.

    The candidate must beat the base by strictly more than ``margin`` to be
    deployed; rates are compared as exact fractions of the counts.
    """
    significant = min(base.sample_size, candidate.sample_size) >= max(min_samples, 1)
    if not significant:
        return False, Recommendation.CONTINUE_TEST
    gap = Fraction(candidate.useful_count, candidate.sample_size) - Fraction(base.useful_count, base.sample_size)
    threshold = Fraction(str(margin))
    if gap > threshold:
        return True, Recommendation.DEPLOY_CANDIDATE
    if gap < -threshold:
        return True, Recommendation.ROLLBACK_TO_BASE
    return True, Recommendation.CONTINUE_TEST


class DriftMonitor:
    """Read-only aggregate queries over the reply log."""

    def __init__(
        self,
        reply_log: ReplyLog,
        config: DriftConfig | None = None,
        experiment: ExperimentConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reply_log = reply_log
        self.config = config or DriftConfig()
        self.experiment = experiment or ExperimentConfig()
        self.clock = clock

    def weekly_windows(self, lookback_weeks: int) -> list[WeeklyWindow]:
        """Windows for the last ``lookback_weeks`` weeks, current week included."""
        current = week_start(self.clock())
        starts = [current - timedelta(weeks=i) for i in range(lookback_weeks - 1, -1, -1)]
        windows = [WeeklyWindow(start=s, end=s + timedelta(weeks=1)) for s in starts]
        confidences: list[list[float]] = [[] for _ in windows]

        for reply in self.reply_log.iter_since(starts[0], windows[-1].end):
            index = (week_start(reply.created_at) - starts[0]).days // 7
            if not 0 <= index < len(windows):
                continue
            window = windows[index]
            window.reply_count += 1
            confidences[index].append(reply.confidence)
            if reply.useful is not None:
                window.rated_count += 1
                window.useful_count += int(reply.useful)

        for window, values in zip(windows, confidences):
            window.avg_confidence = round(_mean(values), 3)
        return windows

    def weekly_performance_drops(self, lookback_weeks: int | None = None) -> WeeklyDropReport:
        lookback_weeks = lookback_weeks or self.config.lookback_weeks
        windows = self.weekly_windows(max(lookback_weeks, 2))
        report = find_performance_drops(windows, self.config.weekly_drop_threshold_pct)

        for drop in report.drops:
            logger.warning(
                f"Usefulness dropped {drop.drop_percentage}% in week of {drop.start.date()}",
                extra={"drop": drop.to_dict()},
            )
        return report

    def confidence_drift(self, days: int | None = None) -> ConfidenceDriftReport:
        days = days or self.config.confidence_window_days
        since = self.clock() - timedelta(days=days)

        by_day: dict[date, list[float]] = {}
        for reply in self.reply_log.iter_since(since):
            by_day.setdefault(reply.created_at.astimezone(timezone.utc).date(), []).append(reply.confidence)

        daily = [(day, _mean(values), len(values)) for day, values in sorted(by_day.items())]
        report = compute_confidence_drift(
            daily,
            alert_threshold=self.config.confidence_alert_threshold,
            trend_threshold=self.config.trend_threshold,
        )

        for metric in report.daily_drift:
            logger.debug("Daily confidence drift", extra={"drift_metric": metric.to_dict()})
        if report.current_alert:
            logger.warning(f"Confidence drift alert over the last {days} days (trend: {report.overall_trend.value})")
        return report

    def arm_stats(self, replies: Iterable[ReplyRecord]) -> tuple[ArmStats, ArmStats]:
        """(base, candidate) stats. Fallback replies count toward neither arm."""
        arms = {
            False: ArmStats(name=self.experiment.base_model),
            True: ArmStats(name=self.experiment.candidate_model),
        }
        confidences: dict[bool, list[float]] = {False: [], True: []}
        latencies: dict[bool, list[float]] = {False: [], True: []}

        for reply in replies:
            if reply.fallback:
                continue
            confidences[reply.is_candidate].append(reply.confidence)
            latencies[reply.is_candidate].append(reply.latency_ms)
            if reply.useful is None:
                continue
            arm = arms[reply.is_candidate]
            arm.sample_size += 1
            arm.useful_count += int(reply.useful)

        for key, arm in arms.items():
            arm.avg_confidence = round(_mean(confidences[key]), 3)
            arm.avg_latency_ms = round(_mean(latencies[key]), 1)
        return arms[False], arms[True]

    def ab_test_results(self, since: datetime | None = None) -> ABTestReport:
        if since is None:
            since = self.clock() - timedelta(days=self.config.confidence_window_days)
        base, candidate = self.arm_stats(self.reply_log.iter_since(since))
        significant, recommendation = decide_recommendation(
            base,
            candidate,
            min_samples=self.config.min_samples_per_arm,
            margin=self.config.promotion_margin,
        )
        logger.info(
            f"A/B test: base {base.success_rate:.3f} (n={base.sample_size}) vs "
            f"candidate {candidate.success_rate:.3f} (n={candidate.sample_size}) -> {recommendation.value}"
        )
        return ABTestReport(
            test_running=self.experiment.enabled,
            base=base,
            candidate=candidate,
            statistically_significant=significant,
            recommendation=recommendation,
            min_samples_per_arm=self.config.min_samples_per_arm,
            promotion_margin=self.config.promotion_margin,
        )
