"""
Transport context contract for JSRO Python.

A transport context supplies everything the JSRO core needs from its host
environment: abortable HTTP requests, timers and independently resolvable
futures. The core never touches the network or the clock directly.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable


class TransportContext(ABC):
    """
    Abstract base class for transport contexts.

    Requests are plain asyncio futures; calling ``cancel()`` on one aborts the
    underlying request. Failed requests are rejected with TransportError (or
    ProtocolError when the body cannot be parsed).
    """

    @abstractmethod
    def request(self, method: str, url: str, body: Any = None) -> asyncio.Future:
        """Start an HTTP request and return a future for its parsed JSON body."""
        pass

    @abstractmethod
    def set_timeout(self, callback: Callable[[], None], delay: float) -> Any:
        """Schedule a callback after ``delay`` milliseconds and return a cancellation token."""
        pass

    @abstractmethod
    def clear_timeout(self, token: Any) -> None:
        """Cancel a callback scheduled with set_timeout()."""
        pass

    @abstractmethod
    def defer(self) -> asyncio.Future:
        """Create a new unresolved future."""
        pass

    async def close(self) -> None:
        """Release any resources held by this context."""
        pass
