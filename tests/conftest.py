"""
Pytest configuration and fixtures for ada-trader tests.

This conftest.py provides shared fixtures and hooks for all tests.
"""
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

NY = ZoneInfo("America/New_York")


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset singleton instances between tests to ensure test isolation.
    
    This is applied automatically to all tests (autouse=True).
    """
    from infra.metrics import MetricsRecorder

    MetricsRecorder._reset_for_testing()
    yield
    MetricsRecorder._reset_for_testing()


@pytest.fixture
def monday_morning():
    """Monday 10:00 New York time: inside the trading window and market hours"""
    return datetime(2026, 10, 19, 10, 0, tzinfo=NY)


@pytest.fixture
def saturday_noon():
    return datetime(2026, 10, 24, 12, 0, tzinfo=NY)
