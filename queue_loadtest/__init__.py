"""
Queue load-test harness.

Simulates realistic ticket buyers in front of a virtual waiting queue:
each virtual user logs in, browses concerts, hesitates, maybe gives up,
and otherwise enters the queue and waits over a WebSocket until it is
admitted or runs out of patience.  The traffic is probabilistic rather
than a scripted burst, so the queue sees arrivals spread the way people
actually arrive.

Modules, leaf-first:

- :mod:`.protocol`: queue-entry and realtime message types
- :mod:`.behavior`: probabilistic browsing steps and pauses
- :mod:`.admission`: the queue admission state machine
- :mod:`.journey`: one full buyer journey
- :mod:`.executor`: concurrent per-user iterations with a deadline

Key Concepts Demonstrated:
- Injectable randomness and sleep for reproducible, fast tests
- gevent greenlets as independent virtual users with no shared state
- Select-style wait between a message channel and a timer
"""

from __future__ import annotations

import logging

__version__ = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
