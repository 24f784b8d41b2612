"""Caller-supplied deadline shared by every wait of one lifecycle call."""

import asyncio
import time
from typing import Callable, Optional, Union

from .errors import DeadlineExceededError


class Deadline:
    """An absolute point in time after which waits stop."""

    def __init__(
        self,
        seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def coerce(cls, value: Union["Deadline", float, None]) -> "Deadline":
        if isinstance(value, Deadline):
            return value
        return cls(value)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, what: str = "operation") -> None:
        if self.expired:
            raise DeadlineExceededError(
                f"deadline of {self.seconds:g}s exceeded while waiting for {what}"
            )

    async def sleep(self, delay: float, what: str = "operation") -> None:
        """Sleep ``delay`` seconds, never past the deadline."""
        self.check(what)
        remaining = self.remaining()
        if remaining is not None and remaining < delay:
            await asyncio.sleep(remaining)
            raise DeadlineExceededError(
                f"deadline of {self.seconds:g}s exceeded while waiting for {what}"
            )
        await asyncio.sleep(delay)
