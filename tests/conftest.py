"""Shared pytest fixtures for the log-tailer test suite."""

import asyncio
import time

import jwt
import pytest

from log_tailer.errors import TransientSinkError
from log_tailer.models import RecordTemplate
from log_tailer.sink import Sink

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FakeSink(Sink):
    """In-memory sink that can fail a number of times or block on a gate."""

    def __init__(self, failures: int = 0, always_fail: bool = False, gate: asyncio.Event | None = None):
        self.calls: list[tuple[str, list[dict]]] = []
        self.delivered: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures = failures
        self._always_fail = always_fail
        self._gate = gate

    async def insert(self, table, records):
        self.calls.append((table, [dict(r) for r in records]))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._gate is not None:
                await self._gate.wait()
            else:
                await asyncio.sleep(0)
            if self._always_fail or len(self.calls) <= self._failures:
                raise TransientSinkError("sink unavailable")
            self.delivered.extend(dict(r) for r in records)
        finally:
            self.in_flight -= 1

    @property
    def contents(self) -> list[str]:
        return [r["content"] for r in self.delivered]


class FakeSleep:
    """Records requested backoff delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture()
def wait_until():
    """Async helper: poll a predicate until true or timeout. Returns the final result."""
    return _wait_until


@pytest.fixture()
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture()
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture()
def template() -> RecordTemplate:
    return RecordTemplate(identity="user-1", fk_value="agent-1")


def make_token(claims: dict) -> str:
    return jwt.encode(claims, TEST_SECRET, algorithm="HS256")


@pytest.fixture()
def token() -> str:
    return make_token({"sub": "user-1", "agentId": "agent-1"})
