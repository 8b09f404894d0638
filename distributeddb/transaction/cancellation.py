"""
Caller-controlled cancellation and deadlines.
"""

import threading
import time
from typing import Callable, Optional

from distributeddb.errors import CancelledError, DeadlineExceededError


class CancellationToken:
    """
    Lets a caller stop a transaction between attempts.

    A token can be cancelled explicitly, carry a deadline, or both. Retry
    loops check it before every remote call and while backing off.
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize token.

        Args:
            deadline: Absolute deadline on clock's timeline, or None
            clock: Monotonic clock in seconds
        """
        self._deadline = deadline
        self._clock = clock
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(
        cls,
        timeout_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CancellationToken":
        """Create a token expiring timeout_ms from now."""
        return cls(deadline=clock() + timeout_ms / 1000.0, clock=clock)

    def cancel(self) -> None:
        """Request cancellation."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_cancelled(self) -> None:
        """
        Raise if the caller gave up.

        Raises:
            CancelledError: If cancel() was called
            DeadlineExceededError: If the deadline passed
        """
        if self.cancelled:
            raise CancelledError("Transaction cancelled by caller")
        if self.expired:
            raise DeadlineExceededError("Transaction deadline exceeded")

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to seconds, waking early on cancel or deadline.

        Returns:
            True if the token was cancelled or expired while waiting
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)

        if self._cancelled.wait(seconds):
            return True
        return self.expired
