"""
Gate a finished run against threshold configuration.

After an executor run, the command line compares two metrics of the
:class:`~queue_loadtest.executor.RunReport` against limits defined in
:file:`profiles/thresholds.yml`:

- **Check failure rate (%)**: failed checks / all checks x 100
- **P95 iteration time (s)**: the 95th-percentile wall time of one
  journey (or one registration)

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0``: all thresholds passed
- ``1``: at least one threshold was breached
- ``2``: the script itself failed (bad config, bad YAML, etc.)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from queue_loadtest.errors import ConfigurationError

# Three-state exit codes so CI can tell "test failed" from "script crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2


@dataclass(frozen=True)
class Thresholds:
    max_check_failure_rate_percent: float = 5.0
    max_p95_iteration_seconds: float = 600.0


def load_thresholds(path: str | Path | None) -> Thresholds:
    """
    Read threshold limits from a YAML file.

    Args:
        path: Path to a YAML file containing
            ``max_check_failure_rate_percent`` and
            ``max_p95_iteration_seconds`` keys.  ``None`` or a missing
            file yields the defaults.

    Returns:
        The parsed :class:`Thresholds`.

    Raises:
        ConfigurationError: If either key is missing or non-numeric.
    """
    if path is None or not Path(path).is_file():
        return Thresholds()

    with Path(path).open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    try:
        return Thresholds(
            max_check_failure_rate_percent=float(data["max_check_failure_rate_percent"]),
            max_p95_iteration_seconds=float(data["max_p95_iteration_seconds"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(
            "Thresholds file must define numeric max_check_failure_rate_percent "
            "and max_p95_iteration_seconds"
        ) from exc


@dataclass(frozen=True)
class Evaluation:
    failure_rate: float
    p95_seconds: float
    thresholds: Thresholds

    @property
    def failure_rate_ok(self) -> bool:
        return self.failure_rate <= self.thresholds.max_check_failure_rate_percent

    @property
    def p95_ok(self) -> bool:
        return self.p95_seconds <= self.thresholds.max_p95_iteration_seconds

    @property
    def passed(self) -> bool:
        return self.failure_rate_ok and self.p95_ok

    @property
    def exit_code(self) -> int:
        return EXIT_PASS if self.passed else EXIT_THRESHOLD_BREACH


def evaluate(failure_rate: float, p95_seconds: float, thresholds: Thresholds) -> Evaluation:
    return Evaluation(failure_rate=failure_rate, p95_seconds=p95_seconds, thresholds=thresholds)


def format_summary(evaluation: Evaluation) -> str:
    """Render a human-readable results table for CI logs."""
    limits = evaluation.thresholds
    lines = [
        "Threshold Check",
        "-" * 60,
        f"{'Metric':<26}{'Actual':>10}{'Limit':>12}{'Status':>12}",
        "-" * 60,
        f"{'Check failure rate (%)':<26}{evaluation.failure_rate:>10.2f}"
        f"{limits.max_check_failure_rate_percent:>12.2f}"
        f"{'PASS' if evaluation.failure_rate_ok else 'FAIL':>12}",
        f"{'P95 iteration time (s)':<26}{evaluation.p95_seconds:>10.2f}"
        f"{limits.max_p95_iteration_seconds:>12.2f}"
        f"{'PASS' if evaluation.p95_ok else 'FAIL':>12}",
        "-" * 60,
        f"Overall: {'PASS' if evaluation.passed else 'FAIL'}",
    ]
    return "\n".join(lines)
