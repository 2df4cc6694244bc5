"""
Integration tests for the queue load-test harness.

Executors run many journeys concurrently against fake services and
demonstrate:
- One result per virtual user, in user order
- Deadline handling for journeys stuck in the queue
- Isolation of crashing workers
- Safe re-runs of bulk registration
"""
