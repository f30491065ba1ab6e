"""Test helpers for ada-trader test suite"""

from tests.helpers.stubs import (
    FakeClock,
    StubMarketData,
    StubNotifier,
    StubPersistence,
    StubPlanner,
    StubTrading,
    make_candidate,
    make_plan,
    strong_market_data,
)

__all__ = [
    "FakeClock",
    "StubMarketData",
    "StubNotifier",
    "StubPersistence",
    "StubPlanner",
    "StubTrading",
    "make_candidate",
    "make_plan",
    "strong_market_data",
]
