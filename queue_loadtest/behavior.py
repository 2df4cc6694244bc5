"""
Probabilistic browsing behavior of a simulated ticket buyer.

Each step is an independent weighted coin flip followed by a uniformly
drawn "human" pause, both taken from the run's
:class:`~queue_loadtest.config.BehaviorProfile`.  Nothing here models
real cognition; the goal is believable, uneven pacing in front of the
waiting queue rather than a synchronized burst.

Randomness and sleeping are injected.  A journey gets its own
``random.Random`` (seeded per user when the run is seeded) and a
cooperative sleep (``gevent.sleep`` in real runs), so the same seed
replays the same decisions and tests never wait on a wall clock.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

import gevent

from queue_loadtest.checks import CheckRecorder
from queue_loadtest.config import BehaviorProfile, DelayRange
from queue_loadtest.session import ApiClient, Session

logger = logging.getLogger(__name__)


def next_month_range(today: date) -> tuple[date, date]:
    """Return the first and last day of the calendar month after *today*."""
    first_of_this_month = today.replace(day=1)
    start = (first_of_this_month + timedelta(days=32)).replace(day=1)
    end = (start + timedelta(days=32)).replace(day=1) - timedelta(days=1)
    return start, end


def classify_seat_peek(status_code: int) -> str:
    """
    Describe the outcome of a seat-status probe made without an access key.

    The service is expected to refuse it, but a refusal for missing
    admission and a broken endpoint are different findings and are
    logged differently.
    """
    if status_code == 200:
        return "allowed without access key"
    if status_code in (401, 403):
        return "denied (no admission yet)"
    if status_code == 0:
        return "no response"
    if status_code >= 500:
        return "service error"
    return "rejected"


class BehaviorSimulator:
    """
    Browsing steps of one virtual user.

    Args:
        api: Client bound to the service base URL.
        session: Credentials attached to every call.
        checks: The journey's check recorder.
        concert_id: Concert the user is interested in.
        profile: Probability and delay table.
        rng: The journey's private random source.
        sleep: Cooperative sleep taking seconds.
        time_unit: Seconds per profile time unit.
        today: Date provider for the "next month" filter.
        log: Logger or adapter carrying the username prefix.
    """

    def __init__(
        self,
        api: ApiClient,
        session: Session,
        checks: CheckRecorder,
        *,
        concert_id: int,
        profile: BehaviorProfile,
        rng: random.Random,
        sleep: Callable[[float], Any] = gevent.sleep,
        time_unit: float = 1.0,
        today: Callable[[], date] = date.today,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> None:
        self.api = api
        self.session = session
        self.checks = checks
        self.concert_id = concert_id
        self.profile = profile
        self.rng = rng
        self.time_unit = time_unit
        self._sleep = sleep
        self._today = today
        self.log = log

    def pause(self, delay: DelayRange) -> float:
        """Suspend this user for a random draw from *delay*; return the units."""
        units = delay.draw(self.rng)
        self._sleep(units * self.time_unit)
        return units

    def _chance(self, probability: float) -> bool:
        return self.rng.random() < probability

    def _get(self, path: str, check_name: str, *, name: str | None = None, **kwargs: Any) -> Any:
        response = self.api.get(path, headers=self.session.headers(), name=name, **kwargs)
        self.checks.check(check_name, response.status_code == 200, f"status={response.status_code}")
        return response

    # ---- browsing -----------------------------------------------------

    def browse_list(self) -> None:
        """Open the first page of the concert list and skim it."""
        self._get(
            "/concerts",
            "concert list fetched",
            params={"page": 0, "size": 20},
            name="/concerts",
        )
        self.pause(self.profile.list_delay)

    def maybe_search(self) -> bool:
        """Search for a random keyword with the configured probability."""
        if not self._chance(self.profile.search_probability):
            return False

        keyword = self.rng.choice(self.profile.keywords)
        self.log.info("searching for %r", keyword)
        self._get(
            "/concerts/search",
            "concert search succeeded",
            params={"query": keyword},
            name="/concerts/search",
        )
        self.pause(self.profile.search_delay)
        return True

    def maybe_filter(self) -> bool:
        """Filter concerts to next calendar month with the configured probability."""
        if not self._chance(self.profile.filter_probability):
            return False

        start, end = next_month_range(self._today())
        self.log.info("filtering concerts %s..%s", start, end)
        self._get(
            "/concerts/filter",
            "concert date filter succeeded",
            params={"startDate": start.isoformat(), "endDate": end.isoformat()},
            name="/concerts/filter",
        )
        self.pause(self.profile.filter_delay)
        return True

    def view_detail(self) -> float:
        """Fetch the concert detail page and read it; return reading units."""
        self._get(
            f"/concerts/{self.concert_id}",
            "concert detail fetched",
            name="/concerts/[id]",
        )
        units = self.pause(self.profile.detail_delay)
        self.log.info("read concert detail for %.1f units", units)
        return units

    def maybe_view_ai_summary(self) -> bool:
        if not self._chance(self.profile.ai_summary_probability):
            return False

        self.log.info("checking AI summary")
        self._get(
            f"/concerts/{self.concert_id}/ai-summary",
            "AI summary fetched",
            name="/concerts/[id]/ai-summary",
        )
        self.pause(self.profile.ai_summary_delay)
        return True

    def maybe_peek_seats(self) -> bool:
        """
        Probe seat status before holding an access key.

        The probe is expected to be refused.  Its result is logged, never
        asserted, because this is the curious user trying anyway.
        """
        if not self._chance(self.profile.seat_peek_probability):
            return False

        response = self.api.get(
            f"/seats/concerts/{self.concert_id}/status",
            headers=self.session.headers(),
            name="/seats/concerts/[id]/status (peek)",
        )
        self.log.info(
            "seat peek before admission: status=%s (%s)",
            response.status_code,
            classify_seat_peek(response.status_code),
        )
        self.pause(self.profile.seat_peek_delay)
        return True

    # ---- decision -----------------------------------------------------

    def decide(self) -> bool:
        """
        Hesitate, then choose whether to go for a ticket.

        Returns:
            ``False`` when the user abandons.  ``True`` when they proceed,
            after one more short hesitation in front of the button.
        """
        units = self.pause(self.profile.hesitation_delay)
        self.log.info("hesitated for %.1f units", units)

        if self._chance(self.profile.abandon_probability):
            self.log.info("decided it is too expensive; leaving")
            return False

        units = self.pause(self.profile.final_hesitation_delay)
        self.log.info("going for it after %.1f more units", units)
        return True

    def cool_down(self) -> None:
        self.pause(self.profile.cooldown_delay)
