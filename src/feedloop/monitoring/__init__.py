"""Drift monitoring and A/B recommendations."""

from .drift import (
    ABTestReport,
    ArmStats,
    ConfidenceDriftReport,
    DriftMetric,
    DriftMonitor,
    DropPeriod,
    Recommendation,
    Trend,
    WeeklyDropReport,
    WeeklyWindow,
    compute_confidence_drift,
    decide_recommendation,
    find_performance_drops,
    week_start,
)

__all__ = [
    "ABTestReport",
    "ArmStats",
    "ConfidenceDriftReport",
    "DriftMetric",
    "DriftMonitor",
    "DropPeriod",
    "Recommendation",
    "Trend",
    "WeeklyDropReport",
    "WeeklyWindow",
    "compute_confidence_drift",
    "decide_recommendation",
    "find_performance_drops",
    "week_start",
]
