#!/usr/bin/env python3
"""
Simple example demonstrating JSRO Python usage.

Connects to a JSRO server, creates a remote object from the server's
"Counter" factory, listens for its events and invokes a few methods.

    python example_basic.py http://localhost:8080/jsro/
"""

import asyncio
import logging
import sys

from jsro import ConnectionOptions, ServerError, establish

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def run_client(url: str):
    """Run the example client."""
    logger.info(f"Connecting to {url}...")

    connection = await establish(url, options=ConnectionOptions(poll_timeout=20000))
    connection.on("loss", lambda error: logger.error(f"Connection lost: {error}"))
    connection.on("disconnect", lambda: logger.info("Disconnected"))

    async with connection:
        counter = await connection.create("Counter", {"start": 10})
        logger.info(f"Created counter with methods: {sorted(counter.methods)}")

        counter.on("changed", lambda value: logger.info(f"Counter changed to {value}"))
        counter.on("destroy", lambda: logger.info("Counter destroyed"))

        # These calls go out in as few POST batches as possible
        results = await asyncio.gather(*(counter.increment(n) for n in range(1, 4)))
        logger.info(f"Increment results: {results}")

        try:
            await counter.invoke("reset", "not-a-number")
        except ServerError as e:
            logger.info(f"Server rejected call: {e}")

        counter.destroy()

        # Give the server a moment to push anything still in flight
        await asyncio.sleep(0.5)


def main():
    if len(sys.argv) != 2:
        print("Usage: python example_basic.py <jsro-url>")
        sys.exit(1)
    asyncio.run(run_client(sys.argv[1]))


if __name__ == "__main__":
    main()
