"""Shared fixtures for liveface tests.

All faces are synthetic landmark layouts, so no ML models are needed.
"""

import pytest

from helpers import FakeTimerFactory, StubMatchEngine, make_landmarks


@pytest.fixture
def timer_factory():
    return FakeTimerFactory()


@pytest.fixture
def stub_match():
    return StubMatchEngine()


@pytest.fixture
def landmarks():
    return make_landmarks()
