"""
aiohttp transport context for JSRO Python.

This module provides the default TransportContext implementation: HTTP
requests go through an aiohttp ClientSession and timers run on the asyncio
event loop.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from .context import TransportContext
from .errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)


class AioHttpContext(TransportContext):
    """
    Transport context backed by aiohttp.

    Example:
        ```python
        async with aiohttp.ClientSession() as session:
            connection = await establish(
                "http://localhost:8080/jsro/",
                context=AioHttpContext(session),
            )
        ```
    """

    def __init__(self,
                 session: Optional[aiohttp.ClientSession] = None,
                 timeout: Union[aiohttp.ClientTimeout, float, None] = None,
                 headers: Optional[Dict[str, str]] = None):
        """
        Initialize the context.

        Args:
            session: An existing ClientSession to use; if omitted, one is created
                lazily and closed by close()
            timeout: Client-side request timeout, either a ClientTimeout or a total
                number of seconds
            headers: Extra headers sent with every request
        """
        if isinstance(timeout, (int, float)):
            timeout = aiohttp.ClientTimeout(total=timeout)

        self._session = session
        self._owns_session = session is None
        self._timeout = timeout
        self._headers = headers or {}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            kwargs: Dict[str, Any] = {"headers": self._headers}
            if self._timeout is not None:
                kwargs["timeout"] = self._timeout
            self._session = aiohttp.ClientSession(**kwargs)
            self._owns_session = True
        return self._session

    def request(self, method: str, url: str, body: Any = None) -> asyncio.Future:
        """Start an HTTP request; cancelling the returned task aborts it."""
        return asyncio.ensure_future(self._request(method, url, body))

    async def _request(self, method: str, url: str, body: Any) -> Any:
        session = self._get_session()
        kwargs: Dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body

        try:
            async with session.request(method, url, **kwargs) as response:
                raw = await response.read()
                charset = response.charset or "utf-8"
                if not 200 <= response.status < 300:
                    raise TransportError(
                        f"{method} {url} failed: {response.status} {response.reason}",
                        status=response.status,
                    )
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {url} timed out") from e

        if not raw:
            return None

        try:
            return json.loads(raw.decode(charset))
        except (LookupError, ValueError) as e:
            raise ProtocolError(f"invalid JSON in response to {method} {url}") from e

    def set_timeout(self, callback: Callable[[], None], delay: float) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay / 1000.0, callback)

    def clear_timeout(self, token: asyncio.TimerHandle) -> None:
        token.cancel()

    def defer(self) -> asyncio.Future:
        return asyncio.get_running_loop().create_future()

    async def close(self) -> None:
        """Close the underlying ClientSession if this context created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")
        self._session = None
