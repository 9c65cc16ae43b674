"""
Exception types for JSRO Python.

Every error raised or used as a rejection reason by this package derives from
JsroError, so applications can catch the whole family at once.
"""

from typing import Any, Optional


class JsroError(Exception):
    """Base class for all JSRO errors."""


class ProtocolError(JsroError):
    """The server sent a malformed or incomplete response."""


class StateError(JsroError):
    """The operation is invalid for the current lifecycle state."""


class DestroyedError(StateError):
    """A pending invocation was abandoned because its remote object was destroyed."""


class ConnectionClosedError(StateError):
    """A pending request was abandoned because its connection went away."""


class TransportError(JsroError):
    """
    A network or transport failure surfaced by the transport context.

    Attributes:
        status: The HTTP status code, when the failure was an HTTP error response
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ServerError(JsroError):
    """
    An error payload returned by the server for one specific request.

    Attributes:
        payload: The raw error value from the result message
    """

    def __init__(self, payload: Any):
        if isinstance(payload, dict) and payload.get("message"):
            message = str(payload["message"])
        else:
            message = str(payload)
        super().__init__(message)
        self.payload = payload
