"""Cancellable polling primitive shared by every wait operation.

Instance, volume and command waits all go through :func:`wait_until`. The caller can
thread a :class:`Deadline` down from an outer workflow so that an inner wait never
outlives the budget of the stage that started it; cancelling the awaiting task stops
the loop at the next ``await``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from integration.exceptions import OperationTimeoutException

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Deadline:
    """Absolute point on the monotonic clock after which waits must stop."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def earliest(self, other: "Deadline | None") -> "Deadline":
        if other is None or self.expires_at <= other.expires_at:
            return self
        return other


@dataclass
class PollResult(Generic[T]):
    done: bool
    value: T


async def wait_until(
    poll: Callable[[], Awaitable[PollResult[T]]],
    *,
    interval_seconds: float,
    timeout_seconds: float,
    description: str,
    deadline: Deadline | None = None,
    timeout_error: type[OperationTimeoutException] = OperationTimeoutException,
) -> T:
    """Call ``poll`` until it reports done, the timeout elapses or the deadline passes.

    The poll runs first, then the timeout is checked, then the loop sleeps for the
    poll interval (shortened to the time left). Exceptions raised by the poll end the
    wait immediately and propagate unchanged.

    Args:
        poll: async callable returning a PollResult
        interval_seconds: fixed delay between polls
        timeout_seconds: hard wall-clock limit for this wait
        description: human readable subject used in logs and errors
        deadline: optional outer deadline; the earlier of the two wins
        timeout_error: exception type raised on expiry

    Returns:
        The value carried by the first PollResult with ``done=True``.

    Raises:
        OperationTimeoutException (or the given subclass) when time runs out.
    """
    effective = Deadline.after(timeout_seconds).earliest(deadline)
    attempt = 0
    while True:
        attempt += 1
        result = await poll()
        if result.done:
            log.debug(f"{description} completed after {attempt} poll(s)")
            return result.value

        if effective.expired:
            raise timeout_error(f"Timed out waiting for {description} after {attempt} poll(s)")

        await asyncio.sleep(min(interval_seconds, effective.remaining()))
