"""
Long poller for JSRO Python.

The poller keeps exactly one long-poll GET outstanding against the server,
guards it with a client-side watchdog, and hands new messages to its owner in
increasing ID order with duplicates removed.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from .context import TransportContext
from .errors import ProtocolError, TransportError
from .options import normalize_poll_timeout

logger = logging.getLogger(__name__)


class Poller:
    """
    Long polls the server for messages addressed to one connection.

    Every poll attempt is tagged with a generation number. A response whose
    generation is no longer current belongs to a request that was superseded
    by a watchdog reissue or by stop(), and is discarded.
    """

    def __init__(self,
                 url: str,
                 context: TransportContext,
                 connection_id: str,
                 poll_timeout: Optional[int],
                 on_poll: Callable[[List[Dict[str, Any]]], None],
                 on_loss: Callable[[BaseException], None]):
        """
        Initialize the poller. Polling starts with start().

        Args:
            url: The base URL of the connection, with a trailing slash
            context: The transport context used for requests and timers
            connection_id: The ID of the connection to poll for
            poll_timeout: Watchdog in milliseconds; unset or non-positive means 15000
            on_poll: Called with each batch of new messages (IDs stripped)
            on_loss: Called once with the error if polling fails for good
        """
        self._url = url
        self._context = context
        self._connection_id = connection_id
        self.poll_timeout = normalize_poll_timeout(poll_timeout)
        self._on_poll = on_poll
        self._on_loss = on_loss

        self._generation = 0
        self._last_seen = -1
        self._pending: Optional[asyncio.Future] = None
        self._timer: Any = None
        self._stopped = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_seen(self) -> int:
        """ID of the newest message delivered so far, or -1."""
        return self._last_seen

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        self.poll()

    def stop(self) -> None:
        """Stop polling and abort the outstanding request, if any."""
        self._stopped = True
        self._generation += 1
        if self._pending is not None:
            self._clear_timer()
            pending = self._pending
            self._pending = None
            pending.cancel()

    def poll(self) -> None:
        """Issue the next long-poll request."""
        if self._stopped:
            return

        self._generation += 1
        generation = self._generation

        url = self._url + self._connection_id
        if self._last_seen >= 0:
            url += f"/{self._last_seen}"

        self._pending = self._context.request("GET", url)
        self._timer = self._context.set_timeout(self._on_timeout, self.poll_timeout)
        self._pending.add_done_callback(functools.partial(self._on_response, generation))

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._context.clear_timeout(self._timer)
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        if self._stopped or self._pending is None:
            return

        logger.debug(f"Poll for {self._connection_id} timed out after {self.poll_timeout}ms; reissuing")
        pending = self._pending
        self._pending = None
        pending.cancel()
        self.poll()

    def _on_response(self, generation: int, future: asyncio.Future) -> None:
        error = None if future.cancelled() else future.exception()

        if generation != self._generation:
            logger.debug(f"Discarding stale poll response (generation {generation})")
            return

        self._pending = None
        self._clear_timer()

        if self._stopped:
            return

        if future.cancelled():
            # only stop() and the watchdog abort on purpose, and both bump the generation
            self._on_loss(TransportError("poll request cancelled"))
            return

        if error is not None:
            self._on_loss(error)
            return

        try:
            messages = self._accept(future.result())
        except ProtocolError as e:
            self._on_loss(e)
            return

        if messages:
            self._on_poll(messages)

        self.poll()

    def _accept(self, body: Any) -> List[Dict[str, Any]]:
        """Filter out already seen messages, order the rest and advance last_seen."""
        if body is None:
            return []
        if not isinstance(body, list):
            raise ProtocolError(f"invalid poll response; expected a list of messages, got {type(body).__name__}")

        fresh: Dict[int, Dict[str, Any]] = {}
        for message in body:
            message_id = message.get("id") if isinstance(message, dict) else None
            if not isinstance(message_id, int) or isinstance(message_id, bool):
                raise ProtocolError(f"invalid poll message; expected an integer id: {message!r}")
            if message_id > self._last_seen and message_id not in fresh:
                fresh[message_id] = message

        if not fresh:
            return []

        ids = sorted(fresh)
        self._last_seen = ids[-1]
        return [_strip_id(fresh[message_id]) for message_id in ids]


def _strip_id(message: Dict[str, Any]) -> Dict[str, Any]:
    body = {key: value for key, value in message.items() if key != "id"}
    # envelope form: {"id": n, "message": {...}}
    if list(body) == ["message"] and isinstance(body["message"], dict):
        return body["message"]
    return body
