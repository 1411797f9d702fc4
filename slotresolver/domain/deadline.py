"""
Caller-supplied deadline for collaborator calls.
"""

import asyncio
import logging
import time
from typing import Awaitable, Optional, TypeVar

from .exceptions import SchedulingTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """
    A point on the monotonic clock after which collaborator calls are abandoned.

    One deadline covers a whole engine invocation, so every awaited call only
    gets whatever time is left.
    """

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError(f"Deadline must be positive, got {seconds}")
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    @classmethod
    def after(cls, seconds: Optional[float]) -> Optional["Deadline"]:
        """Build a deadline, or None when no timeout was requested."""
        if seconds is None:
            return None
        return cls(seconds)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    async def run(self, awaitable: Awaitable[T], what: str) -> T:
        """
        Await ``awaitable`` within the remaining time.

        Raises:
            SchedulingTimeoutError: If the deadline elapses first
        """
        remaining = self.remaining()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise SchedulingTimeoutError(f"Deadline of {self.seconds}s elapsed before {what}")

        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as exc:
            logger.warning("Deadline of %ss elapsed during %s", self.seconds, what)
            raise SchedulingTimeoutError(
                f"Deadline of {self.seconds}s elapsed during {what}"
            ) from exc


async def call_with_deadline(
    awaitable: Awaitable[T],
    deadline: Optional[Deadline],
    what: str
) -> T:
    """Await directly when there is no deadline, otherwise bound the wait."""
    if deadline is None:
        return await awaitable
    return await deadline.run(awaitable, what)
