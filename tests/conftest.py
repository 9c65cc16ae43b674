"""
Shared fixtures for JSRO Python tests.
"""

import asyncio
from typing import Any, Callable, List, Optional

import pytest

from jsro.connection import Connection
from jsro.context import TransportContext


class FakeRequest(asyncio.Future):
    """A request the test completes by hand."""

    def __init__(self, method: str, url: str, body: Any, honour_abort: bool):
        super().__init__(loop=asyncio.get_running_loop())
        self.method = method
        self.url = url
        self.body = body
        self.aborted = False
        self._honour_abort = honour_abort

    def cancel(self, *args, **kwargs) -> bool:
        self.aborted = True
        if self._honour_abort:
            return super().cancel(*args, **kwargs)
        # simulate a transport whose response races the abort
        return False


class FakeTimer:
    def __init__(self, callback: Callable[[], None], delay: float):
        self.callback = callback
        self.delay = delay
        self.cleared = False

    def fire(self) -> None:
        assert not self.cleared, "timer was cleared"
        self.cleared = True
        self.callback()


class FakeContext(TransportContext):
    """Transport context that records requests and timers instead of performing them."""

    def __init__(self):
        self.requests: List[FakeRequest] = []
        self.timers: List[FakeTimer] = []
        self.honour_abort = True
        self.closed = False

    def request(self, method: str, url: str, body: Any = None) -> FakeRequest:
        request = FakeRequest(method, url, body, self.honour_abort)
        self.requests.append(request)
        return request

    def set_timeout(self, callback: Callable[[], None], delay: float) -> FakeTimer:
        timer = FakeTimer(callback, delay)
        self.timers.append(timer)
        return timer

    def clear_timeout(self, token: FakeTimer) -> None:
        token.cleared = True

    def defer(self) -> asyncio.Future:
        return asyncio.get_running_loop().create_future()

    async def close(self) -> None:
        self.closed = True

    def outstanding(self, method: str) -> List[FakeRequest]:
        return [r for r in self.requests if r.method == method and not r.done() and not r.aborted]

    def last(self, method: str) -> Optional[FakeRequest]:
        matching = [r for r in self.requests if r.method == method]
        return matching[-1] if matching else None

    def count(self, method: str) -> int:
        return len([r for r in self.requests if r.method == method])

    def active_timers(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cleared]


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def context():
    return FakeContext()


@pytest.fixture
def connect(context):
    """Create a polling Connection on the fake context."""
    def _connect(**kwargs) -> Connection:
        return Connection("http://jsro.test/api", context, "c1", **kwargs)
    return _connect


@pytest.fixture
def settled():
    return settle
