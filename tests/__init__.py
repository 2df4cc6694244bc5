"""
Test suite for the queue load-test harness.

This package contains:
- unit/: module-level tests against in-process fakes
- integration/: executors and the CLI wired end to end over fakes
- performance/: Locust scenarios driving a real service
"""
