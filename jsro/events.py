"""
Minimal event registry for JSRO Python.

Connections and remote objects use an EventRegistry to let applications
subscribe to named events ("loss", "disconnect", "destroy" and any event
pushed by the server).
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventRegistry:
    """Maps event names to an ordered set of listeners."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, fn: Listener) -> None:
        """Register a listener for an event. Registering the same listener twice has no effect."""
        listeners = self._listeners.setdefault(event, [])
        if fn not in listeners:
            listeners.append(fn)

    def off(self, event: str, fn: Optional[Listener] = None) -> None:
        """
        Unregister one or all listeners for an event.

        Args:
            event: The event to unregister from
            fn: The listener to remove; if omitted, all listeners for the event are removed
        """
        if fn is None:
            self._listeners.pop(event, None)
            return

        listeners = self._listeners.get(event)
        if listeners and fn in listeners:
            listeners.remove(fn)
            if not listeners:
                del self._listeners[event]

    def fire(self, event: str, *args: Any) -> None:
        """
        Synchronously invoke every listener registered for an event.

        Listeners are called in registration order over a snapshot, so a listener
        may subscribe or unsubscribe without affecting the current fan-out. A
        listener that raises is logged and skipped. Coroutine listeners are
        scheduled on the running loop.
        """
        for fn in list(self._listeners.get(event, ())):
            try:
                result = fn(*args)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception:
                logger.exception(f"Error in {event!r} listener {fn!r}")

    def listener_count(self, event: str) -> int:
        """Get the number of listeners registered for an event."""
        return len(self._listeners.get(event, ()))
