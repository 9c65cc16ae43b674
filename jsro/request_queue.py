"""
Request queue for JSRO Python.

The queue buffers outgoing requests until the connection is able to send
them as one batch, assigns each a correlation ID, and routes results coming
back from the server to whoever enqueued the request.
"""

import asyncio
import itertools
import logging
from typing import Any, Callable, Dict, List

from .context import TransportContext
from .errors import ServerError

logger = logging.getLogger(__name__)


class RequestQueue:
    """Manages a queue of pending requests and their results."""

    def __init__(self, context: TransportContext):
        self._context = context
        self._next_id = itertools.count()
        self._batch: List[Dict[str, Any]] = []
        self._results: Dict[int, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._batch)

    @property
    def pending_count(self) -> int:
        """Number of requests still waiting for a result."""
        return len(self._results)

    def add(self, request: Dict[str, Any]) -> asyncio.Future:
        """
        Add a request to the queue.

        The request is copied with a fresh ``correlationId`` and appended to the
        pending batch.

        Returns:
            A future for the result payload of the request
        """
        correlation_id = next(self._next_id)
        result = self._context.defer()
        self._results[correlation_id] = result
        self._batch.append({"correlationId": correlation_id, **request})
        return result

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every queued request, in the order they were added."""
        batch = self._batch
        self._batch = []
        return batch

    def handle_result(self, result: Dict[str, Any]) -> None:
        """
        Resolve (or reject) the future of the request a result belongs to.

        Results for unknown correlation IDs are ignored; they are duplicates or
        belong to requests that were already settled.
        """
        payload = dict(result)
        correlation_id = payload.pop("correlationId", None)

        future = self._results.pop(correlation_id, None)
        if future is None:
            logger.debug(f"Ignoring result for unknown correlation ID {correlation_id!r}")
            return
        if future.done():
            return

        error = payload.get("error")
        if error is not None:
            future.set_exception(ServerError(error))
        else:
            future.set_result(payload)

    def reject_all(self, error_factory: Callable[[], BaseException]) -> None:
        """
        Reject every request still waiting for a result and forget them.

        Each future is rejected with a fresh exception from error_factory.
        """
        results = self._results
        self._results = {}
        for future in results.values():
            if not future.done():
                future.set_exception(error_factory())
