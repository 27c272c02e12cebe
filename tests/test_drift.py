"""Tests for drift detection and A/B recommendations."""

from datetime import date, datetime, timedelta, timezone

import pytest

from feedloop.monitoring import (
    ArmStats,
    DriftMonitor,
    Recommendation,
    Trend,
    WeeklyWindow,
    compute_confidence_drift,
    decide_recommendation,
    find_performance_drops,
    week_start,
)
from feedloop.schema import DriftConfig, ExperimentConfig
from feedloop.store import ReplyLog

MONDAY = datetime(2024, 3, 4, tzinfo=timezone.utc)


def _window(weeks_ago, rate, rated=100, replies=None):
    start = MONDAY - timedelta(weeks=weeks_ago)
    return WeeklyWindow(
        start=start,
        end=start + timedelta(weeks=1),
        reply_count=replies if replies is not None else rated,
        rated_count=rated,
        useful_count=round(rate * rated),
        avg_confidence=0.7,
    )


class TestFindPerformanceDrops:
    def test_large_drop_is_reported(self):
        report = find_performance_drops([_window(1, 0.80), _window(0, 0.55)])

        assert len(report.drops) == 1
        assert report.drops[0].drop_percentage == pytest.approx(31.25)
        assert report.drops[0].start == MONDAY
        assert report.auto_training_recommended
        assert report.training_data_count == 100

    def test_small_drop_is_ignored(self):
        report = find_performance_drops([_window(1, 0.80), _window(0, 0.75)])
        assert report.drops == []
        assert not report.auto_training_recommended

    @pytest.mark.parametrize("previous", [5, 10, 20, 40, 45, 50, 55, 75, 80, 90])
    def test_exactly_threshold_is_not_a_drop(self, previous):
        windows = [_window(1, previous / 100), _window(0, previous * 0.8 / 100)]
        assert windows[1].useful_count * 5 == previous * 4

        report = find_performance_drops(windows)

        assert report.drops == []
        assert not report.auto_training_recommended

    def test_just_past_threshold_is_a_drop(self):
        report = find_performance_drops([_window(1, 0.80), _window(0, 0.63)])
        assert len(report.drops) == 1
        assert report.drops[0].drop_percentage == 21.25

    def test_improvement_is_not_a_drop(self):
        assert find_performance_drops([_window(1, 0.5), _window(0, 0.9)]).drops == []

    def test_empty_week_is_skipped(self):
        windows = [_window(2, 0.80), _window(1, 0.0, rated=0), _window(0, 0.40)]
        report = find_performance_drops(windows)
        assert len(report.drops) == 1
        assert report.drops[0].drop_percentage == 50.0

    def test_zero_previous_rate_is_skipped(self):
        assert find_performance_drops([_window(1, 0.0), _window(0, 0.0)]).drops == []


class TestComputeConfidenceDrift:
    def test_drift_against_first_day(self):
        daily = [(date(2024, 3, d), conf, 10) for d, conf in [(1, 0.80), (2, 0.78), (3, 0.55)]]
        report = compute_confidence_drift(daily)

        assert [m.drift for m in report.daily_drift] == [0.0, -0.02, -0.25]
        assert report.current_alert
        # Fewer than 8 days: first and last week windows overlap
        assert report.overall_trend == Trend.STABLE
        assert any("threshold" in r for r in report.recommendations)

    def test_declining(self):
        daily = [(date(2024, 3, d), 0.9 - 0.01 * d, 5) for d in range(1, 15)]
        report = compute_confidence_drift(daily)
        assert report.overall_trend == Trend.DECLINING
        assert not report.current_alert
        assert any("retraining" in r for r in report.recommendations)

    def test_stable(self):
        daily = [(date(2024, 3, d), 0.75, 5) for d in range(1, 15)]
        report = compute_confidence_drift(daily)
        assert report.overall_trend == Trend.STABLE
        assert not report.current_alert
        assert report.recommendations == ["System performing within normal parameters"]

    def test_improving(self):
        daily = [(date(2024, 3, d), 0.6 + 0.02 * d, 5) for d in range(1, 15)]
        assert compute_confidence_drift(daily).overall_trend == Trend.IMPROVING

    def test_single_day_has_no_trend(self):
        report = compute_confidence_drift([(date(2024, 3, 1), 0.9, 3)])
        assert report.overall_trend == Trend.STABLE
        assert report.daily_drift[0].drift == 0.0

    def test_empty(self):
        report = compute_confidence_drift([])
        assert report.daily_drift == []
        assert not report.current_alert


class TestDecideRecommendation:
    def _arm(self, n, useful):
        return ArmStats(name="m", sample_size=n, useful_count=useful)

    def test_needs_minimum_samples(self):
        significant, rec = decide_recommendation(self._arm(999, 500), self._arm(5000, 4900))
        assert not significant
        assert rec == Recommendation.CONTINUE_TEST

    def test_undersized_candidate_continues(self):
        significant, rec = decide_recommendation(self._arm(5000, 500), self._arm(999, 990))
        assert not significant
        assert rec == Recommendation.CONTINUE_TEST

    def test_empty_arms_with_zero_minimum(self):
        significant, rec = decide_recommendation(self._arm(0, 0), self._arm(0, 0), min_samples=0)
        assert not significant
        assert rec == Recommendation.CONTINUE_TEST

    @pytest.mark.parametrize("base_useful", [120, 180, 290, 350, 410])
    def test_gap_of_exactly_margin_continues(self, base_useful):
        up = decide_recommendation(self._arm(1000, base_useful), self._arm(1000, base_useful + 50))
        down = decide_recommendation(self._arm(1000, base_useful + 50), self._arm(1000, base_useful))
        assert up == (True, Recommendation.CONTINUE_TEST)
        assert down == (True, Recommendation.CONTINUE_TEST)

    def test_gap_just_past_margin(self):
        _, up = decide_recommendation(self._arm(1000, 120), self._arm(1000, 171))
        _, down = decide_recommendation(self._arm(1000, 171), self._arm(1000, 120))
        assert up == Recommendation.DEPLOY_CANDIDATE
        assert down == Recommendation.ROLLBACK_TO_BASE

    def test_deploy_candidate(self):
        significant, rec = decide_recommendation(self._arm(1000, 800), self._arm(1000, 900))
        assert significant
        assert rec == Recommendation.DEPLOY_CANDIDATE

    def test_rollback(self):
        _, rec = decide_recommendation(self._arm(1000, 900), self._arm(1000, 800))
        assert rec == Recommendation.ROLLBACK_TO_BASE

    def test_within_margin_continues(self):
        _, rec = decide_recommendation(self._arm(1000, 800), self._arm(1000, 830))
        assert rec == Recommendation.CONTINUE_TEST


class TestDriftMonitor:
    def _log_week(self, log, when, useful, total, confidence=0.7):
        for i in range(total):
            log.log_reply(
                f"u{i}", "gpt-4o", False, "m", "r", confidence, useful=i < useful, created_at=when + timedelta(hours=i)
            )

    def test_week_start_is_monday_utc(self):
        assert week_start(datetime(2024, 3, 7, 15, tzinfo=timezone.utc)) == MONDAY
        assert week_start(MONDAY) == MONDAY

    def test_weekly_drops_from_reply_log(self, db, clock):
        clock.now = MONDAY + timedelta(days=2)
        log = ReplyLog(db, clock=clock)
        self._log_week(log, MONDAY - timedelta(weeks=1), useful=8, total=10)
        self._log_week(log, MONDAY, useful=4, total=10)
        # Unrated replies don't count toward usefulness
        log.log_reply("u", "gpt-4o", False, "m", "r", 0.7, created_at=MONDAY + timedelta(hours=20))

        report = DriftMonitor(log, DriftConfig(), clock=clock).weekly_performance_drops(4)

        assert len(report.windows) == 4
        assert len(report.drops) == 1
        assert report.drops[0].drop_percentage == 50.0
        assert report.drops[0].affected_replies == 11

    def test_monitor_is_read_only(self, db, clock):
        log = ReplyLog(db, clock=clock)
        self._log_week(log, clock.now - timedelta(days=1), useful=1, total=3)
        monitor = DriftMonitor(log, clock=clock)
        with db.connect() as conn:
            before = conn.execute("SELECT * FROM replies ORDER BY id").fetchall()

        monitor.weekly_performance_drops()
        monitor.confidence_drift()
        monitor.ab_test_results()

        with db.connect() as conn:
            after = conn.execute("SELECT * FROM replies ORDER BY id").fetchall()
        assert [tuple(r) for r in before] == [tuple(r) for r in after]

    def test_confidence_drift_groups_by_day(self, db, clock):
        log = ReplyLog(db, clock=clock)
        day_one = clock.now - timedelta(days=3)
        log.log_reply("u", "b", False, "m", "r", 0.8, created_at=day_one)
        log.log_reply("u", "b", False, "m", "r", 0.6, created_at=day_one + timedelta(minutes=5))
        log.log_reply("u", "b", False, "m", "r", 0.4, created_at=day_one + timedelta(days=1))

        report = DriftMonitor(log, clock=clock).confidence_drift(days=7)

        assert [m.avg_confidence for m in report.daily_drift] == [0.7, 0.4]
        assert [m.reply_count for m in report.daily_drift] == [2, 1]
        assert report.daily_drift[1].drift == -0.3
        assert report.current_alert

    def test_ab_results_split_by_arm(self, db, clock):
        log = ReplyLog(db, clock=clock)
        when = clock.now - timedelta(days=1)
        for i in range(4):
            log.log_reply("u", "base", False, "m", "r", 0.7, useful=i < 2, created_at=when)
            log.log_reply("u", "cand", True, "m", "r", 0.9, useful=i < 3, created_at=when)
        log.log_reply("u", "base", False, "m", "r", 0.7, useful=False, fallback=True, created_at=when)

        config = DriftConfig(min_samples_per_arm=4)
        experiment = ExperimentConfig(enabled=True, base_model="base", candidate_model="cand")
        report = DriftMonitor(log, config, experiment, clock=clock).ab_test_results()

        assert report.base.sample_size == 4
        assert report.base.success_rate == 0.5
        assert report.candidate.success_rate == 0.75
        assert report.statistically_significant
        assert report.recommendation == Recommendation.DEPLOY_CANDIDATE
        assert report.test_running
