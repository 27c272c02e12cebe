"""feedloop command-line interface.

Every sub-command is one independently triggered job, suitable for cron or a
systemd timer:

    feedloop process --limit 50
    feedloop export --min-gain 2
    feedloop drift weekly
    feedloop versions promote v3
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .config import load_config_model
from .errors import FeedloopError
from .export import ExportSelector
from .logging_config import setup_logging
from .routing import assign_variant

logger = logging.getLogger("feedloop.cli")


def _pipeline(args: argparse.Namespace):
    from .pipeline import LearningPipeline

    return LearningPipeline.from_config(args.config)


def _emit(args: argparse.Namespace, data, text: str) -> None:
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


def _parse_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid ISO date: {value}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# Improvement batch


def handle_process(args: argparse.Namespace) -> int:
    result = _pipeline(args).run_improvement_batch(args.limit)
    if result.skipped_concurrent:
        print("A batch is already running, nothing to do.")
        return 0
    _emit(
        args,
        result.to_dict(),
        f"Processed {result.processed} of {result.candidates} failures "
        f"({result.duplicates} duplicates, {result.failed} failed)",
    )
    return 0 if not result.failed else 2


def handle_reprocess(args: argparse.Namespace) -> int:
    if not args.force:
        print("Refusing to clear the improvement ledger without --force.")
        return 1
    result = _pipeline(args).force_reprocess(args.limit)
    _emit(args, result.to_dict(), f"Regenerated {result.processed} improvements ({result.failed} failed)")
    return 0


def handle_record_failure(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    record_id = pipeline.failure_store.record_failure(
        message=args.message,
        assistant_reply=args.reply,
        explanation=args.explanation,
        human_correction=args.correction,
    )
    print(record_id)
    return 0


def handle_leaderboard(args: argparse.Namespace) -> int:
    records = _pipeline(args).ledger.leaderboard(args.limit)
    if args.json:
        _emit(args, [r.to_dict() for r in records], "")
        return 0
    if not records:
        print("No improvements yet.")
        return 0
    for rank, record in enumerate(records, start=1):
        preview = record.corrected_reply.replace("\n", " ")[:70]
        print(f"{rank:3d}. +{record.score_gain_estimate:4.1f}  [{record.failure_category}]  {preview}")
    return 0


def handle_stats(args: argparse.Namespace) -> int:
    summary = _pipeline(args).status_summary()
    ledger = summary["ledger"]
    lines = [
        f"Failures:      {summary['failures']}",
        f"Improvements:  {ledger['count']} (avg gain {ledger['avg_gain']})",
        f"Exported:      {ledger['exported_count']}",
        f"Last batch:    {ledger['last_processed_at'] or 'never'}",
        "Categories:",
    ]
    for category, count in sorted(ledger["category_histogram"].items(), key=lambda kv: -kv[1]):
        lines.append(f"  {category:<14} {count}")
    active = summary["active_version"]
    lines.append(f"Active model:  {active['version_tag'] if active else 'base'}")
    _emit(args, summary, "\n".join(lines))
    return 0


# Export


def handle_export(args: argparse.Namespace) -> int:
    selector = ExportSelector(
        min_score_gain=args.min_gain,
        categories=args.category or [],
        created_after=args.after,
        created_before=args.before,
        limit=args.limit,
        include_exported=args.include_exported,
    )
    result = _pipeline(args).export(selector)
    if not result.example_count:
        print("No improvements matched, nothing exported.")
        return 0
    _emit(args, result.to_dict(), f"Exported {result.example_count} examples to {result.path}")
    return 0


# Drift


def handle_drift_weekly(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    if args.export:
        report, export = pipeline.check_drift_and_export(args.weeks)
    else:
        report, export = pipeline.drift_monitor.weekly_performance_drops(args.weeks), None

    lines = [f"Auto-training recommended: {report.auto_training_recommended}"]
    for drop in report.drops:
        lines.append(
            f"  week of {drop.start.date()}: -{drop.drop_percentage}% "
            f"({drop.affected_replies} replies, avg confidence {drop.avg_confidence})"
        )
    if export is not None:
        lines.append(f"Exported {export.example_count} recovery examples")
    data = report.to_dict()
    data["export"] = export.to_dict() if export else None
    _emit(args, data, "\n".join(lines))
    return 0


def handle_drift_confidence(args: argparse.Namespace) -> int:
    report = _pipeline(args).check_confidence_drift(args.days)
    lines = [f"Trend: {report.overall_trend.value}  Alert: {report.current_alert}"]
    for metric in report.daily_drift:
        lines.append(f"  {metric.day}  {metric.avg_confidence:.3f}  drift {metric.drift:+.3f}  n={metric.reply_count}")
    lines.extend(f"- {r}" for r in report.recommendations)
    _emit(args, report.to_dict(), "\n".join(lines))
    return 0


def handle_drift_ab(args: argparse.Namespace) -> int:
    report = _pipeline(args).check_ab_test()
    text = (
        f"Base      {report.base.name}: {report.base.success_rate:.3f} (n={report.base.sample_size})\n"
        f"Candidate {report.candidate.name}: {report.candidate.success_rate:.3f} (n={report.candidate.sample_size})\n"
        f"Significant: {report.statistically_significant}  Recommendation: {report.recommendation.value}"
    )
    _emit(args, report.to_dict(), text)
    return 0


# Routing


def handle_assign(args: argparse.Namespace) -> int:
    config = load_config_model(args.config)
    decision = assign_variant(args.user_id, config.experiment)
    _emit(
        args,
        {"bucket": decision.bucket, "variant_key": decision.variant_key, "is_candidate": decision.is_candidate},
        f"{args.user_id}: bucket {decision.bucket} -> {decision.variant_key}"
        + (" (candidate)" if decision.is_candidate else ""),
    )
    return 0


# Versions


def handle_versions_list(args: argparse.Namespace) -> int:
    versions = _pipeline(args).registry.list_versions()
    if args.json:
        _emit(args, [v.to_dict() for v in versions], "")
        return 0
    if not versions:
        print("No model versions registered.")
        return 0
    for version in versions:
        marker = "*" if version.is_active else " "
        print(
            f"{marker} {version.version_tag:<6} {version.fine_tune_artifact_id}  "
            f"base={version.base_model} examples={version.training_example_count}"
        )
    return 0


def handle_versions_promote(args: argparse.Namespace) -> int:
    version = _pipeline(args).promote(args.version)
    print(f"Promoted {version.version_tag} ({version.fine_tune_artifact_id})")
    return 0


def handle_versions_rollback(args: argparse.Namespace) -> int:
    version = _pipeline(args).rollback(args.version)
    print(f"Rolled back to {version.version_tag} ({version.fine_tune_artifact_id})")
    return 0


def handle_versions_deactivate(args: argparse.Namespace) -> int:
    count = _pipeline(args).registry.deactivate_all()
    print(f"Deactivated {count} version(s); traffic uses the base model")
    return 0


# Fine-tuning


def handle_finetune_submit(args: argparse.Namespace) -> int:
    job = _pipeline(args).submit_finetune(args.batch_id, args.base_model, args.suffix)
    _emit(args, job.to_dict(), f"Submitted job {job.job_id} ({job.status.value})")
    return 0


def handle_finetune_poll(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    job = pipeline.finetune.poll(args.job_id)
    _emit(args, job.to_dict(), pipeline.finetune.report(job))
    return 0


def handle_finetune_list(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    jobs = pipeline.finetune.list_jobs()
    if args.json:
        _emit(args, [j.to_dict() for j in jobs], "")
        return 0
    for job in jobs:
        progress = pipeline.finetune.progress(job)
        print(f"{job.job_id}  {job.status.value:<10} {progress['percent']:3d}%  {job.batch_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedloop", description="Continuous learning loop for support replies.")
    parser.add_argument("--config", type=Path, help="Path to a feedloop TOML config.")
    parser.add_argument("--json", action="store_true", help="Print machine-readable output.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    subparsers = parser.add_subparsers(dest="command")

    process_parser = subparsers.add_parser("process", help="Turn unprocessed failures into improvements.")
    process_parser.add_argument("--limit", type=int, help="Maximum failures to process.")
    process_parser.set_defaults(func=handle_process)

    reprocess_parser = subparsers.add_parser("reprocess", help="Clear the ledger and regenerate everything.")
    reprocess_parser.add_argument("--force", action="store_true", help="Confirm clearing the ledger.")
    reprocess_parser.add_argument("--limit", type=int)
    reprocess_parser.set_defaults(func=handle_reprocess)

    failure_parser = subparsers.add_parser("record-failure", help="Capture an inadequate reply.")
    failure_parser.add_argument("--message", required=True, help="Customer message.")
    failure_parser.add_argument("--reply", required=True, help="The inadequate assistant reply.")
    failure_parser.add_argument("--explanation", required=True, help="Why the reply failed.")
    failure_parser.add_argument("--correction", help="Optional human-written reply.")
    failure_parser.set_defaults(func=handle_record_failure)

    leaderboard_parser = subparsers.add_parser("leaderboard", help="Top improvements by score gain.")
    leaderboard_parser.add_argument("--limit", type=int, default=20)
    leaderboard_parser.set_defaults(func=handle_leaderboard)

    stats_parser = subparsers.add_parser("stats", help="Ledger and pipeline status.")
    stats_parser.set_defaults(func=handle_stats)

    export_parser = subparsers.add_parser("export", help="Write a training corpus batch.")
    export_parser.add_argument("--min-gain", type=float, help="Minimum score gain.")
    export_parser.add_argument("--category", action="append", help="Restrict to a failure category (repeatable).")
    export_parser.add_argument("--after", type=_parse_date, help="Created at or after (ISO date).")
    export_parser.add_argument("--before", type=_parse_date, help="Created before (ISO date).")
    export_parser.add_argument("--limit", type=int)
    export_parser.add_argument("--include-exported", action="store_true", help="Re-export earlier examples.")
    export_parser.set_defaults(func=handle_export)

    drift_parser = subparsers.add_parser("drift", help="Drift and A/B reports.")
    drift_subparsers = drift_parser.add_subparsers(dest="drift_command")
    weekly_parser = drift_subparsers.add_parser("weekly", help="Week-over-week usefulness drops.")
    weekly_parser.add_argument("--weeks", type=int, help="Weeks to look back.")
    weekly_parser.add_argument("--export", action="store_true", help="Export recovery data when drops are found.")
    weekly_parser.set_defaults(func=handle_drift_weekly)
    confidence_parser = drift_subparsers.add_parser("confidence", help="Daily confidence drift.")
    confidence_parser.add_argument("--days", type=int)
    confidence_parser.set_defaults(func=handle_drift_confidence)
    ab_parser = drift_subparsers.add_parser("ab", help="A/B test recommendation.")
    ab_parser.set_defaults(func=handle_drift_ab)

    assign_parser = subparsers.add_parser("assign", help="Show the experiment arm for a user.")
    assign_parser.add_argument("user_id")
    assign_parser.set_defaults(func=handle_assign)

    versions_parser = subparsers.add_parser("versions", help="Model version registry.")
    versions_subparsers = versions_parser.add_subparsers(dest="versions_command")
    versions_subparsers.add_parser("list", help="List versions.").set_defaults(func=handle_versions_list)
    promote_parser = versions_subparsers.add_parser("promote", help="Activate a version.")
    promote_parser.add_argument("version", help="Version id or tag.")
    promote_parser.set_defaults(func=handle_versions_promote)
    rollback_parser = versions_subparsers.add_parser("rollback", help="Re-activate the previous version.")
    rollback_parser.add_argument("version", nargs="?", help="Explicit version id or tag.")
    rollback_parser.set_defaults(func=handle_versions_rollback)
    versions_subparsers.add_parser("deactivate", help="Serve the base model only.").set_defaults(
        func=handle_versions_deactivate
    )

    finetune_parser = subparsers.add_parser("finetune", help="Fine-tuning jobs.")
    finetune_subparsers = finetune_parser.add_subparsers(dest="finetune_command")
    submit_parser = finetune_subparsers.add_parser("submit", help="Submit an export batch.")
    submit_parser.add_argument("batch_id")
    submit_parser.add_argument("--base-model")
    submit_parser.add_argument("--suffix")
    submit_parser.set_defaults(func=handle_finetune_submit)
    poll_parser = finetune_subparsers.add_parser("poll", help="Refresh a job's status.")
    poll_parser.add_argument("job_id")
    poll_parser.set_defaults(func=handle_finetune_poll)
    finetune_subparsers.add_parser("list", help="List jobs.").set_defaults(func=handle_finetune_list)

    return parser


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    setup_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        enable_json=False,
        enable_rotation=False,
    )

    try:
        return args.func(args)
    except FeedloopError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
