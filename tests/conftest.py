"""
Shared pytest fixtures for the queue load-test suite.

The fakes themselves live in :mod:`tests.fakes`; this module wires them
into fixtures.  Fixtures hand out fresh objects for every test so no
recorded request, check or connection leaks between tests.

Key Concepts Demonstrated:
- Factory fixtures for settings and behavior profiles
- Compressed time units so queue timeouts last milliseconds
- Faker for realistic but throwaway access keys
"""

from __future__ import annotations

# Locust monkey-patches ssl via gevent on import; do it before anything
# else imports ssl/urllib3 so the locustfile tests do not recurse.
from gevent import monkey

monkey.patch_all()

from typing import Any

import pytest
from faker import Faker

from queue_loadtest.config import BehaviorProfile, Config, Settings
from queue_loadtest.session import ApiClient
from tests.fakes import BASE_URL, CONCERT_ID, DECISIVE, WS_URL, FakeHttpSession, default_routes

# Initialize Faker for generating test data
fake = Faker()


# -----------------------------------------------------------------------------
# Settings Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def make_settings():
    """
    Factory for settings pointing at the fake service.

    Time is compressed so a realtime timeout of 50 units lasts 50 ms.
    """

    def _make(behavior: BehaviorProfile | None = None, **overrides: Any) -> Settings:
        values = {
            "base_url": BASE_URL,
            "ws_url": WS_URL,
            "concert_id": CONCERT_ID,
            "time_unit": 0.001,
            "realtime_timeout": 50,
            "seed": 1,
        }
        values.update(overrides)
        return Settings.from_config(Config, behavior=behavior or BehaviorProfile(), **values)

    return _make


@pytest.fixture
def decisive_profile() -> BehaviorProfile:
    return BehaviorProfile(**DECISIVE)


@pytest.fixture
def settings(make_settings, decisive_profile) -> Settings:
    return make_settings(behavior=decisive_profile)


# -----------------------------------------------------------------------------
# Service Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def http() -> FakeHttpSession:
    """A healthy fake service with no queue-entry route yet."""
    return FakeHttpSession(default_routes())


@pytest.fixture
def api(http) -> ApiClient:
    return ApiClient(http, BASE_URL)


@pytest.fixture
def access_key() -> str:
    return fake.uuid4()
