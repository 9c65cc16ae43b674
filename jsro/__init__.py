"""
JSRO Python - A client for the JSRO remote object protocol

This module lets applications create proxies for server-hosted objects,
invoke their methods over HTTP and receive server-pushed events via long
polling, all over one logical connection.
"""

from .connection import Connection, establish
from .context import TransportContext
from .aiohttp_context import AioHttpContext
from .errors import (
    JsroError, ProtocolError, StateError, DestroyedError, ConnectionClosedError,
    TransportError, ServerError,
)
from .events import EventRegistry
from .options import ConnectionOptions
from .remote_object import RemoteObjectProxy, ProxyControl, create_remote_object

__version__ = "0.1.0"
__all__ = [
    "Connection",
    "establish",
    "TransportContext",
    "AioHttpContext",
    "ConnectionOptions",
    "EventRegistry",
    "RemoteObjectProxy",
    "ProxyControl",
    "create_remote_object",
    "JsroError",
    "ProtocolError",
    "StateError",
    "DestroyedError",
    "ConnectionClosedError",
    "TransportError",
    "ServerError",
]
