"""
Configuration options for JSRO connections.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 15000


def normalize_poll_timeout(value) -> int:
    """Coerce a poll timeout in milliseconds, falling back to the default when unusable."""
    try:
        timeout = int(value)
    except (TypeError, ValueError):
        if value is not None:
            logger.warning(f"Invalid poll timeout {value!r}; using {DEFAULT_POLL_TIMEOUT}ms")
        return DEFAULT_POLL_TIMEOUT
    return timeout if timeout > 0 else DEFAULT_POLL_TIMEOUT


class ConnectionOptions:
    """Configuration options for JSRO connections."""

    def __init__(self,
                 poll_timeout: int = DEFAULT_POLL_TIMEOUT,
                 debug: bool = False):
        """
        Initialize connection options.

        Args:
            poll_timeout: Poll watchdog in milliseconds; if a poll request has not
                received a response in this time it is aborted and a new one is
                issued. Unset or non-positive values use the 15000ms default.
            debug: Log every sent batch and delivered poll batch at debug level
        """
        self.poll_timeout = normalize_poll_timeout(poll_timeout)
        self.debug = debug
