"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))


class FakeClock:
    """Virtual clock: time moves only when a sleep() finishes.

    A sleep suspends for real_scale of the requested seconds (1 ms per fake
    second by default) so that a deadline timer loses against a call that
    returns promptly. Cancelled sleeps neither advance time nor get recorded.
    """

    def __init__(self, start: float = 0.0, real_scale: float = 0.001) -> None:
        self.now = start
        self.real_scale = real_scale
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds * self.real_scale)
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests independent of the caller's AWS and controller environment."""
    for key in (
        "CLUSTER_NAME",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "WAIT_TIMEOUT",
        "UPDATE_POLL_INTERVAL",
        "LIST_CHUNK_SIZE",
        "ENUMERATION_REGIONS",
        "MAX_PARTITION_CONCURRENCY",
        "APPROVE",
        "LOG_LEVEL",
        "CLUSTER_CONFIG_FILE",
        "ENABLE_LOG_TYPES",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def instant_waits(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Make waiters built without an explicit clock use a FakeClock."""
    clock = FakeClock()
    monkeypatch.setattr("controlplane.waiter.SystemClock", lambda: clock)
    return clock
