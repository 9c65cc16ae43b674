"""
Remote object proxies for JSRO Python.

A RemoteObjectProxy is the application's handle on one server-side instance.
Attribute access for any of the instance's methods returns a callable that
forwards the call to the server. The owning connection keeps a separate
ProxyControl for the privileged operations applications must not perform:
delivering server events and forcing the proxy into the lost state.
"""

import asyncio
import functools
import itertools
from typing import Any, Callable, FrozenSet, Iterable, List, Optional, Tuple

from .errors import DestroyedError, StateError
from .events import EventRegistry, Listener


InvokeFunc = Callable[[str, List[Any]], asyncio.Future]


class RemoteObjectProxy:
    """
    A proxy for an instance of a server-side object.

    Remote methods are reachable as attributes, except those named on, off,
    invoke, destroy, methods or destroyed, which resolve to the proxy's own
    API. Call such a method with proxy.invoke(name, *args) instead.

    Example:
        ```python
        counter = await connection.create("Counter", {"start": 1})
        counter.on("changed", lambda value: print("now", value))
        await counter.increment(5)
        counter.destroy()
        ```
    """

    def __init__(self,
                 methods: Iterable[str],
                 invoke: InvokeFunc,
                 on_destroy: Callable[[], None],
                 defer: Optional[Callable[[], asyncio.Future]] = None):
        """
        Initialize the proxy.

        Args:
            methods: Names of the methods the remote object exposes
            invoke: Sends an invocation to the server and returns a future for
                the result payload
            on_destroy: Called when the application destroys this proxy
            defer: Factory for invocation futures; defaults to the running loop's
        """
        object.__setattr__(self, '_methods', frozenset(methods))
        object.__setattr__(self, '_send', invoke)
        object.__setattr__(self, '_on_destroy', on_destroy)
        object.__setattr__(self, '_defer', defer or (lambda: asyncio.get_running_loop().create_future()))
        object.__setattr__(self, '_events', EventRegistry())
        object.__setattr__(self, '_destroyed', False)
        object.__setattr__(self, '_call_ids', itertools.count())
        object.__setattr__(self, '_calls', {})

    def __getattr__(self, name: str) -> Callable[..., asyncio.Future]:
        """Access a remote method."""
        if name.startswith('_') or name not in self._methods:
            raise AttributeError(f"remote object has no method {name!r}")
        return functools.partial(self.invoke, name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Cannot set attributes on remote object proxies")

    def __dir__(self) -> List[str]:
        return sorted(set(super().__dir__()) | self._methods)

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "active"
        return f"<RemoteObjectProxy methods={sorted(self._methods)} {state}>"

    @property
    def methods(self) -> FrozenSet[str]:
        return self._methods

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def on(self, event: str, fn: Listener) -> None:
        """
        Register a listener for an event.

        Args:
            event: A server-pushed event name, or 'loss' / 'destroy'
            fn: The function to invoke with the event arguments
        """
        self._events.on(event, fn)

    def off(self, event: str, fn: Optional[Listener] = None) -> None:
        """Unregister one listener, or all listeners if fn is omitted."""
        self._events.off(event, fn)

    def invoke(self, method: str, *args: Any) -> asyncio.Future:
        """
        Invoke a method on the remote object.

        Returns:
            A future for the method's return value

        Raises:
            StateError: If the proxy has already been destroyed
        """
        if self._destroyed:
            raise StateError("remote object already destroyed")

        call_id = next(self._call_ids)
        result = self._defer()
        self._calls[call_id] = result

        request = self._send(method, list(args))
        request.add_done_callback(functools.partial(self._on_result, call_id))
        return result

    def _on_result(self, call_id: int, request: asyncio.Future) -> None:
        error = None if request.cancelled() else request.exception()

        if self._destroyed:
            # already rejected when the proxy was destroyed
            return

        result = self._calls.pop(call_id, None)
        if result is None or result.done():
            return

        if request.cancelled():
            result.cancel()
        elif error is not None:
            result.set_exception(error)
        else:
            payload = request.result()
            result.set_result(payload.get("result") if isinstance(payload, dict) else payload)

    def destroy(self) -> None:
        """
        Destroy this remote object. Afterwards no events are received and any
        invocation fails.

        Raises:
            StateError: If the proxy has already been destroyed
        """
        if self._destroyed:
            raise StateError("remote object already destroyed")

        self._mark_destroyed()
        self._on_destroy()
        self._events.fire("destroy")

    def _mark_destroyed(self) -> None:
        object.__setattr__(self, '_destroyed', True)

        calls = self._calls
        object.__setattr__(self, '_calls', {})
        for result in calls.values():
            if not result.done():
                result.set_exception(DestroyedError("remote object destroyed"))

    def _lose(self) -> None:
        if self._destroyed:
            return

        self._mark_destroyed()
        self._events.fire("loss")
        self._events.fire("destroy")

    def _pending_calls(self) -> int:
        return len(self._calls)


class ProxyControl:
    """Owner-only control over a RemoteObjectProxy."""

    def __init__(self, proxy: RemoteObjectProxy):
        self._proxy = proxy

    @property
    def proxy(self) -> RemoteObjectProxy:
        return self._proxy

    def fire(self, event: str, *args: Any) -> None:
        """Deliver a server-pushed event to the proxy's listeners."""
        self._proxy._events.fire(event, *args)

    def on_loss(self) -> None:
        """
        Force the proxy into the lost state.

        Pending invocations are rejected and 'loss' then 'destroy' are fired.
        Unlike RemoteObjectProxy.destroy(), the owner is not asked to inform the
        server. Calling this on a destroyed proxy does nothing.
        """
        self._proxy._lose()

    def pending_calls(self) -> int:
        return self._proxy._pending_calls()


def create_remote_object(methods: Iterable[str],
                         invoke: InvokeFunc,
                         on_destroy: Callable[[], None],
                         defer: Optional[Callable[[], asyncio.Future]] = None
                         ) -> Tuple[RemoteObjectProxy, ProxyControl]:
    """Create a remote object proxy together with the control its owner keeps."""
    proxy = RemoteObjectProxy(methods, invoke, on_destroy, defer)
    return proxy, ProxyControl(proxy)
