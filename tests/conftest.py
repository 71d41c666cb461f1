import asyncio

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from main import create_app
from tandem.config import PresenceConfig
from tandem.presence import PresenceTracker
from tandem.relay import RendezvousRelay
from tandem.state import RoomRegistry


class FakeClock:
    """Manually advanced wall clock for heartbeat tests"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


async def wait_until(predicate, timeout: float = 1.0):
    """Yield to the loop until predicate() holds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def relay(registry, clock):
    return RendezvousRelay(registry=registry, clock=clock, max_poll_timeout=5.0)


@pytest.fixture
def tracker(relay):
    return PresenceTracker(relay, PresenceConfig(
        sweep_interval=5, heartbeat_timeout=15,
        inactive_sweep_interval=300, inactive_threshold=60,
    ))


@pytest_asyncio.fixture
async def client():
    relay = RendezvousRelay(max_poll_timeout=2.0)
    app = create_app(relay=relay)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client
