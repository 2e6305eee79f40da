import pytest

from core.queue import DurableQueue, MemoryKeyValueStorage
from runtime.api.rate_limit import SlidingWindowRateLimiter
from runtime.api.server import create_app
from runtime.lifecycle.state_machine import SessionStateMachine
from runtime.store.response_store import ResponseStore
from runtime.store.session_store import SessionStore


class FakeClock:
    """Epoch-millisecond clock the test moves by hand."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRemote:
    """Scripted stand-in for RemoteEndpoint.

    Each call pops the next outcome; once the script is empty `default` is
    used. An outcome that is an exception instance is raised.
    """

    def __init__(self, outcomes=None, default=None) -> None:
        self.calls = []
        self.outcomes = list(outcomes or [])
        self.default = default if default is not None else {"success": True}

    async def call(self, operation, body):
        self.calls.append((operation, body))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeFallback:
    def __init__(self, error=None) -> None:
        self.writes = []
        self.error = error

    async def write(self, operation, body):
        self.writes.append((operation, body))
        if self.error is not None:
            raise self.error
        return {"success": True, "inserted": 1}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def queue(clock, remote):
    return DurableQueue(MemoryKeyValueStorage(), remote, clock=clock)


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def state_machine(session_store):
    return SessionStateMachine(session_store)


@pytest.fixture
def app():
    return create_app(
        session_store=SessionStore(),
        response_store=ResponseStore(),
        rate_limiter=SlidingWindowRateLimiter(max_requests=1000, window_seconds=60),
    )
