"""Pytest configuration and fixtures."""

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chat_dispatch.config import DispatchConfig  # noqa: E402
from chat_dispatch.models import Contract, ContractStatus, Session  # noqa: E402
from chat_dispatch.timers import MissTimer  # noqa: E402
from chat_dispatch.watch import StatusWatch  # noqa: E402

# 10:00 UTC falls in the DAY session
DAY_TIME = datetime(2024, 5, 14, 10, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from chat_dispatch.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def event_bus(storage):
    """Create EventBus with storage."""
    from chat_dispatch.event_bus import EventBus

    return EventBus(storage)


@pytest.fixture
def tracker(storage, event_bus):
    """Create Tracker with storage and event bus."""
    from chat_dispatch.tracker import Tracker

    return Tracker(event_bus=event_bus, storage=storage)


@pytest.fixture
def backend():
    """Create an empty in-memory chat backend."""
    from chat_dispatch.backend import InMemoryChatBackend

    return InMemoryChatBackend()


@pytest.fixture
def config():
    """Dispatch config scaled down to test speed."""
    return DispatchConfig(
        waiting_timeout_seconds=2.0,
        message_retry_limit=2,
        retry_delay_seconds=0.01,
        watch_reconnect_delay_seconds=0.01,
    )


@pytest.fixture
def day_clock():
    """Time source pinned to the DAY session."""

    async def now() -> datetime:
        return DAY_TIME

    return now


@pytest.fixture
def make_contract():
    """Factory for DAY-session active contracts."""

    def factory(
        contract_id: str,
        miss_timeout: float = 5.0,
        session: Session = Session.DAY,
        status: ContractStatus = ContractStatus.ACTIVE,
    ) -> Contract:
        return Contract(
            id=contract_id,
            session=session,
            status=status,
            miss_timeout_seconds=miss_timeout,
        )

    return factory


class RecordingWatch(StatusWatch):
    """StatusWatch that counts unsubscribe calls."""

    def __init__(self, backend, reconnect_delay: float = 0.01):
        super().__init__(backend, reconnect_delay=reconnect_delay)
        self.unsubscribe_calls = 0

    def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        super().unsubscribe()


class MonitorRegistry:
    """Collects every timer and watch an engine creates."""

    def __init__(self, backend):
        self._backend = backend
        self.timers: list[MissTimer] = []
        self.watches: list[RecordingWatch] = []

    def make_timer(self, conversation_id: str, contract_id: str) -> MissTimer:
        timer = MissTimer(conversation_id, contract_id)
        self.timers.append(timer)
        return timer

    def make_watch(self) -> RecordingWatch:
        watch = RecordingWatch(self._backend)
        self.watches.append(watch)
        return watch


@pytest.fixture
def monitors(backend):
    """Registry of the timers and watches created during a test."""
    return MonitorRegistry(backend)


@pytest.fixture
def make_session(backend, config, day_clock, monitors):
    """Factory for DispatchSessions wired to the in-memory backend."""
    from chat_dispatch.dispatch import DispatchEngine, DispatchSession
    from chat_dispatch.selector import ContractSelector

    def factory(**kwargs) -> DispatchSession:
        engine = DispatchEngine(
            backend,
            watch_factory=monitors.make_watch,
            timer_factory=monitors.make_timer,
        )
        kwargs.setdefault("config", config)
        kwargs.setdefault("selector", ContractSelector(day_clock))
        kwargs.setdefault("engine", engine)
        return DispatchSession(backend, **kwargs)

    return factory


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds or fail after ``timeout`` seconds."""

    async def waiter(predicate, timeout: float = 2.0, interval: float = 0.005):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met within %ss" % timeout)
            await asyncio.sleep(interval)

    return waiter
