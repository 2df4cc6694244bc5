"""
Command-line entry point.

Usage examples::

    # Five realistic buyers against a local stack (the defaults):
    python -m queue_loadtest journey

    # Compress time ten-fold and replay the same decisions:
    python -m queue_loadtest journey --users 20 --time-unit 0.1 --seed 7

    # Register the account pool the journeys log in with:
    python -m queue_loadtest register --accounts 100

Every flag falls back to the ``LOADTEST_*`` environment variables read by
:mod:`queue_loadtest.config`.
"""

from __future__ import annotations

import argparse
import logging
import sys

from queue_loadtest.config import Settings, get_config
from queue_loadtest.executor import RegistrationExecutor, RunReport, VirtualUserExecutor
from queue_loadtest.thresholds import EXIT_SCRIPT_ERROR, evaluate, format_summary, load_thresholds

logger = logging.getLogger(__name__)


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _common_options() -> argparse.ArgumentParser:
    """Flags shared by every subcommand, accepted after the command name."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--env", help="Config profile: default, smoke or soak")
    common.add_argument("--base-url", help="Service API root, e.g. http://localhost:8080/api")
    common.add_argument("--concert-id", type=int, help="Concert under test")
    common.add_argument("--max-duration", type=float, help="Seconds before unfinished users are abandoned")
    common.add_argument("--time-unit", type=float, help="Seconds per simulated time unit")
    common.add_argument("--thresholds", help="Path to thresholds YAML file")
    common.add_argument(
        "--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS, help="Root log level"
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="queue_loadtest",
        description="Simulate ticket buyers against a virtual waiting queue.",
    )
    common = _common_options()
    commands = parser.add_subparsers(dest="command", required=True)

    journey = commands.add_parser("journey", parents=[common], help="Run full buyer journeys")
    journey.add_argument("--users", type=int, help="Number of virtual users")
    journey.add_argument("--ws-url", help="Waiting-queue WebSocket URL")
    journey.add_argument("--realtime-timeout", type=float, help="Queue wait ceiling in time units")
    journey.add_argument("--seed", type=int, help="Seed for reproducible decisions")
    journey.add_argument("--behavior-file", help="Behavior profile YAML file")

    register = commands.add_parser("register", parents=[common], help="Register the test account pool")
    register.add_argument("--accounts", type=int, help="Number of accounts to register")
    register.add_argument("--encoding", choices=("form", "json"), help="Register request encoding")

    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {
        "base_url": args.base_url,
        "concert_id": args.concert_id,
        "max_duration": args.max_duration,
        "time_unit": args.time_unit,
    }
    if args.command == "journey":
        overrides.update(
            virtual_users=args.users,
            ws_url=args.ws_url,
            realtime_timeout=args.realtime_timeout,
            seed=args.seed,
            behavior_file=args.behavior_file,
        )
    else:
        overrides.update(
            register_accounts=args.accounts,
            register_encoding=args.encoding,
        )
    return Settings.from_config(get_config(args.env), **overrides)


def format_outcomes(report: RunReport) -> str:
    """Render outcome counts and per-check pass/fail counts."""
    lines = ["Outcomes", "-" * 60]
    for outcome, count in sorted(report.outcome_counts.items(), key=lambda item: item[0].value):
        lines.append(f"{outcome.value:<40}{count:>20}")
    lines += ["", "Checks", "-" * 60, f"{'Name':<40}{'Passed':>10}{'Failed':>10}", "-" * 60]
    for name, (passed, failed) in sorted(report.checks.counts.items()):
        lines.append(f"{name:<40}{passed:>10}{failed:>10}")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: resolve settings, run the executor, gate on thresholds.

    Returns:
        ``EXIT_PASS`` (0) if all thresholds are met,
        ``EXIT_THRESHOLD_BREACH`` (1) if any are exceeded, or
        ``EXIT_SCRIPT_ERROR`` (2) on unexpected failures.
    """
    args = build_parser().parse_args(argv)

    try:
        logging.getLogger().setLevel(args.log_level)
        settings = settings_from_args(args)
        thresholds = load_thresholds(args.thresholds or settings.thresholds_file)

        if args.command == "journey":
            report = VirtualUserExecutor(settings).run()
        else:
            report = RegistrationExecutor(settings).run()

        evaluation = evaluate(report.checks.failure_rate_percent, report.p95_elapsed, thresholds)
        print(format_outcomes(report))
        print()
        print(format_summary(evaluation))
        return evaluation.exit_code
    except Exception as exc:
        logger.exception("Load test run failed")
        print(f"Load test failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR
