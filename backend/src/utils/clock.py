"""
Time source shared by the gateway, the response cache and the poller.

Everything that waits or compares timestamps goes through a ``Clock`` so tests
can substitute a fake one and step time deterministically.
"""

import asyncio
import time


class Clock:
    """Monotonic wall clock backed by ``time.monotonic`` and ``asyncio.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
