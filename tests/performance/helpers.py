"""
Helper utilities for Locust performance scenarios.

Bridges the harness to Locust: numbering of virtual users across the
whole run, and a check listener that turns every journey check into a
Locust request event so failures land in Locust's statistics and CSV
output next to the HTTP calls.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Any

from queue_loadtest.checks import CheckResult

CHECK_REQUEST_TYPE = "CHECK"

# Locust spawns users one by one in the same process; a shared counter
# gives each a stable 1-based index like the command-line executor does.
_user_numbers = itertools.count(1)


class CheckFailed(Exception):
    """Reported to Locust as the exception of a failed check."""


def next_user_index() -> int:
    return next(_user_numbers)


def locust_check_listener(environment: Any) -> Callable[[CheckResult], None]:
    """
    Build a check listener that reports to *environment*'s request events.

    Args:
        environment: The running Locust ``Environment``.

    Returns:
        A callable suitable for :class:`~queue_loadtest.checks.CheckRecorder`.
    """

    def _report(result: CheckResult) -> None:
        environment.events.request.fire(
            request_type=CHECK_REQUEST_TYPE,
            name=result.name,
            response_time=0,
            response_length=0,
            exception=None if result.passed else CheckFailed(result.detail or result.name),
            context={},
        )

    return _report
