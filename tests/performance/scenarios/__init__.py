"""
Locust scenario user classes.

Each module in this package defines one Locust ``HttpUser`` subclass:

- :mod:`.queue_journey`: the full buyer journey through the waiting queue
- :mod:`.registration`: one-shot registration of the test account pool

Both inherit from :class:`~.base.OneShotUser`, which resolves settings,
numbers the user and wires journey checks into Locust statistics.
"""
