"""
Shared test fixtures for the real-time service.

This module provides reusable fixtures for:
- A controllable clock and a fake timer factory driven by it
- An in-memory store wired to that clock
- Recording WebSocket connections and a connection hub
- Coordinators built the same way the service builds them
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest
import pytest_asyncio

from libs.config import Config
from libs.memory_store import create_memory_store
from libs.ws_hub import ConnectionHub
from services.realtime.handlers import EventHandlers, build_coordinators

START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class MutableClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTimer:
    def __init__(self, due: datetime, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimerFactory:
    """Timer factory whose timers fire only when ``advance`` moves the clock past them."""

    def __init__(self, clock: MutableClock):
        self.clock = clock
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.clock() + timedelta(seconds=delay), callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    async def advance(self, **kwargs) -> int:
        """Move the clock and run every timer that became due, in due order."""
        self.clock.advance(**kwargs)
        due = sorted(
            (t for t in self.pending if t.due <= self.clock()),
            key=lambda t: t.due,
        )
        for timer in due:
            timer.fired = True
            await timer.callback()
        return len(due)


class RecordingConnection:
    """Stands in for a WebSocket; keeps every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.frames: List[Dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(data)

    def events(self) -> List[str]:
        return [frame["event"] for frame in self.frames]

    def payloads(self, event_name: str) -> List[Any]:
        return [frame["data"] for frame in self.frames if frame["event"] == event_name]

    def clear(self) -> None:
        self.frames.clear()


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def timers(clock):
    return FakeTimerFactory(clock)


@pytest.fixture
def store(clock):
    return create_memory_store(clock)


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def connection_factory():
    """Factory fixture for recording connections."""

    def _make(fail: bool = False) -> RecordingConnection:
        return RecordingConnection(fail=fail)

    return _make


@pytest.fixture
def settings():
    return Config()


@pytest.fixture
def coordinators(store, hub, settings, clock, timers):
    return build_coordinators(store, hub, settings, clock=clock, timer_factory=timers)


@pytest.fixture
def wired_hub(hub, coordinators):
    """Hub with every named event handler registered."""
    EventHandlers(hub, coordinators).register()
    return hub


@pytest.fixture
def vehicle_data():
    return {
        "registration_number": "REG-001",
        "make": "Volvo",
        "model": "FH16",
        "year": 2022,
        "license_plate": "D-12345",
        "status": "active",
        "current_location": {"latitude": 53.3498, "longitude": -6.2603},
    }


@pytest_asyncio.fixture
async def vehicle(store, vehicle_data):
    """A persisted vehicle parked in Dublin."""
    return await store.vehicles.insert(vehicle_data)


@pytest_asyncio.fixture
async def other_vehicle(store, vehicle_data):
    data = dict(vehicle_data, registration_number="REG-002", license_plate="D-67890")
    data["current_location"] = None
    return await store.vehicles.insert(data)
