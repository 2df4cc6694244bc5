"""
Performance testing package (Locust-based).

Runs the same buyer journeys as ``python -m queue_loadtest`` under
Locust, so the queue can be watched from Locust's web UI or gated on its
CSV output.  Every virtual user performs exactly one iteration and then
stops, which reproduces the per-user-iteration model of the command-line
executor; Locust's ``--run-time`` plays the part of the max duration.

Key Concepts Demonstrated:
- One-shot Locust users (single task, then ``StopUser``)
- Journey checks surfaced as ``CHECK`` rows in Locust statistics
- Tagged scenarios so CI can run subsets via ``--tags``
"""
