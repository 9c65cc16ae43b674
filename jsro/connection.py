"""
Connection management for JSRO Python.

A Connection is a client-side session bound to one server-issued connection
ID. It owns the request queue, the long poller and the table of live remote
objects, and is the only component that talks to the transport context.
"""

import asyncio
import functools
import logging
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .context import TransportContext
from .errors import ConnectionClosedError, ProtocolError, StateError, TransportError
from .events import EventRegistry, Listener
from .options import ConnectionOptions
from .poller import Poller
from .remote_object import ProxyControl, RemoteObjectProxy, create_remote_object
from .request_queue import RequestQueue

logger = logging.getLogger(__name__)


async def establish(url: str,
                    context: Optional[TransportContext] = None,
                    options: Optional[ConnectionOptions] = None) -> 'Connection':
    """
    Establish a connection to a JSRO server.

    Args:
        url: The base URL on which to perform requests for this connection
        context: The transport context to use; if omitted, an AioHttpContext is
            created and closed again when the connection goes away
        options: Optional connection configuration

    Returns:
        Connection: The established connection, already polling

    Raises:
        ProtocolError: If the server response carries no connection ID
        TransportError: If the request fails

    Example:
        ```python
        connection = await establish("http://localhost:8080/jsro/")
        connection.on("loss", lambda error: print("lost:", error))

        counter = await connection.create("Counter", {"start": 1})
        print(await counter.increment(5))

        connection.disconnect()
        ```
    """
    owns_context = context is None
    if context is None:
        from .aiohttp_context import AioHttpContext
        context = AioHttpContext()

    try:
        data = await context.request("GET", url)
        if not isinstance(data, dict) or data.get("connectionId") is None:
            raise ProtocolError("invalid response; expected connection ID")
    except BaseException:
        if owns_context:
            await context.close()
        raise

    return Connection(url, context, str(data["connectionId"]), options, owns_context=owns_context)


class Connection:
    """A connection to a JSRO-capable server."""

    def __init__(self,
                 url: str,
                 context: TransportContext,
                 connection_id: str,
                 options: Optional[ConnectionOptions] = None,
                 owns_context: bool = False):
        """
        Initialize the connection and start polling.

        Prefer establish(), which obtains the connection ID from the server.

        Args:
            url: The base URL of the JSRO server
            context: The transport context used for all requests and timers
            connection_id: The server-issued ID of this connection
            options: Optional connection configuration
            owns_context: Close the context once the connection has been torn down
        """
        if not url.endswith('/'):
            url += '/'

        self.url = url
        self.connection_id = connection_id
        self.options = options or ConnectionOptions()

        self._context = context
        self._owns_context = owns_context
        self._connected = True
        self._requests = RequestQueue(context)
        self._pending_send: Optional[asyncio.Future] = None
        self._closing: Optional[asyncio.Future] = None
        self._instances: Dict[Any, ProxyControl] = {}
        self._events = EventRegistry()

        self._poller = Poller(
            url,
            context,
            connection_id,
            self.options.poll_timeout,
            self._on_poll,
            self._on_loss,
        )
        self._poller.start()
        logger.info(f"Connection {connection_id} established with {url}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._connected:
            self.disconnect()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """
        Wait until the server has answered the DELETE sent on teardown.

        Returns immediately while the connection is still up. A failed DELETE
        is not reported; an owned context is closed before this returns.
        """
        if self._closing is not None:
            await asyncio.wait([self._closing])

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def instances(self) -> Mapping[Any, RemoteObjectProxy]:
        """Live remote objects indexed by instance ID."""
        return MappingProxyType({
            instance_id: control.proxy for instance_id, control in self._instances.items()
        })

    def on(self, event: str, fn: Listener) -> None:
        """
        Register a listener for a connection event.

        Args:
            event: 'loss' (called with the error) or 'disconnect'
            fn: The function to invoke to handle the event
        """
        self._events.on(event, fn)

    def off(self, event: str, fn: Optional[Listener] = None) -> None:
        """Unregister one listener, or all listeners for the event if fn is omitted."""
        self._events.off(event, fn)

    def create(self, name: str, spec: Any = None) -> asyncio.Future:
        """
        Create a remote object from the named server-side factory.

        Args:
            name: The name of the factory to create the instance with
            spec: The object creation spec

        Returns:
            A future for the created RemoteObjectProxy

        Raises:
            StateError: If the connection is already disconnected
        """
        if not self._connected:
            raise StateError("already disconnected")

        result = self._send_request({
            "action": "create",
            "name": name,
            "spec": spec,
        })
        return asyncio.ensure_future(self._complete_create(result))

    async def _complete_create(self, result: asyncio.Future) -> RemoteObjectProxy:
        payload = await result

        info = payload
        if isinstance(payload, dict) and "instanceId" not in payload:
            info = payload.get("result")
        if not isinstance(info, dict) or info.get("instanceId") is None:
            raise ProtocolError(f"invalid create result; expected instance ID: {payload!r}")

        if not self._connected:
            raise ConnectionClosedError("connection disconnected")

        return self._register(info["instanceId"], info.get("methods") or [])

    def disconnect(self) -> None:
        """
        Disconnect from the server.

        Every live remote object is lost, pending requests are abandoned and the
        server is asked to delete the connection.

        Raises:
            StateError: If the connection is already disconnected
        """
        if not self._connected:
            raise StateError("already disconnected")
        self._teardown(None)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return {
            "connected": self._connected,
            "instances": len(self._instances),
            "pending_results": self._requests.pending_count,
            "queued_requests": len(self._requests),
            "sending": self._pending_send is not None,
            "last_seen_message": self._poller.last_seen,
        }

    def _on_loss(self, error: BaseException) -> None:
        if not self._connected:
            logger.debug(f"Ignoring loss on closed connection {self.connection_id}: {error!r}")
            return

        logger.warning(f"Connection {self.connection_id} lost: {error!r}")
        self._events.fire("loss", error)
        if self._connected:
            self._teardown(error)

    def _teardown(self, error: Optional[BaseException]) -> None:
        self._connected = False
        self._events.fire("disconnect")

        # the whole connection is going away, so instances are not destroyed one by one
        instances = list(self._instances.values())
        self._instances.clear()
        for control in instances:
            control.on_loss()

        if self._pending_send is not None:
            pending = self._pending_send
            self._pending_send = None
            pending.cancel()

        self._poller.stop()

        def closed_error() -> ConnectionClosedError:
            closed = ConnectionClosedError("connection disconnected")
            closed.__cause__ = error
            return closed

        self._requests.drain()
        self._requests.reject_all(closed_error)

        deleted = self._context.request("DELETE", self.url + self.connection_id)
        self._closing = asyncio.ensure_future(self._finish_teardown(deleted))
        logger.info(f"Connection {self.connection_id} disconnected")

    async def _finish_teardown(self, deleted: asyncio.Future) -> None:
        try:
            await deleted
        except Exception as e:
            logger.debug(f"Failed to delete connection {self.connection_id}: {e!r}")
        finally:
            if self._owns_context:
                await self._context.close()

    def _destroy(self, instance_id: Any) -> None:
        """Destroy a remote object instance on the server."""
        self._instances.pop(instance_id, None)
        if not self._connected:
            return

        result = self._send_request({
            "action": "destroy",
            "instanceId": instance_id,
        })
        result.add_done_callback(functools.partial(self._on_destroyed, instance_id))

    def _on_destroyed(self, instance_id: Any, future: asyncio.Future) -> None:
        error = None if future.cancelled() else future.exception()
        if error is not None:
            logger.debug(f"Failed to destroy instance {instance_id}: {error!r}")

    def _invoke(self, instance_id: Any, method: str, args: List[Any]) -> asyncio.Future:
        return self._send_request({
            "action": "invoke",
            "instanceId": instance_id,
            "method": method,
            "args": args,
        })

    def _send_request(self, request: Dict[str, Any]) -> asyncio.Future:
        """Queue a request and send it right away if possible."""
        result = self._requests.add(request)
        self._send_queued_requests()
        return result

    def _send_queued_requests(self) -> None:
        if self._pending_send is not None or not self._connected:
            return

        batch = self._requests.drain()
        if not batch:
            return

        if self.options.debug:
            logger.debug(f"Sending batch of {len(batch)} request(s): {batch!r}")

        self._pending_send = self._context.request("POST", self.url + self.connection_id, batch)
        self._pending_send.add_done_callback(self._on_sent)

    def _on_sent(self, future: asyncio.Future) -> None:
        if future is not self._pending_send:
            # aborted by teardown
            if not future.cancelled():
                future.exception()
            return
        self._pending_send = None

        if future.cancelled():
            self._on_loss(TransportError("send request cancelled"))
            return

        error = future.exception()
        if error is not None:
            self._on_loss(error)
            return

        results = future.result()
        if isinstance(results, list):
            for result in results:
                if isinstance(result, dict) and "correlationId" in result:
                    self._requests.handle_result(result)

        self._send_queued_requests()

    def _on_poll(self, messages: List[Dict[str, Any]]) -> None:
        if self.options.debug:
            logger.debug(f"Received {len(messages)} message(s): {messages!r}")

        for message in messages:
            if "correlationId" in message:
                self._requests.handle_result(message)
            elif "event" in message:
                control = self._instances.get(message.get("instanceId"))
                if control is None:
                    logger.debug(f"Dropping {message['event']!r} event for unknown instance {message.get('instanceId')!r}")
                    continue
                control.fire(message["event"], *(message.get("args") or []))
            else:
                logger.warning(f"Dropping unrecognized message: {message!r}")

    def _register(self, instance_id: Any, methods: List[str]) -> RemoteObjectProxy:
        """Register a newly created remote object with this connection."""
        if instance_id in self._instances:
            error = StateError(f"assigned instance ID already in use: {instance_id}")
            logger.error(f"Connection {self.connection_id}: {error}")
            self._on_loss(error)
            raise error

        proxy, control = create_remote_object(
            methods,
            functools.partial(self._invoke, instance_id),
            functools.partial(self._destroy, instance_id),
            self._context.defer,
        )
        self._instances[instance_id] = control
        return proxy
