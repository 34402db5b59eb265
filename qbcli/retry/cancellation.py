"""Cancellation signal with an optional deadline."""

import threading
import time


CANCELLED = "cancelled"
DEADLINE_EXCEEDED = "deadline exceeded"


class CancellationToken:
    """Cooperative cancellation signal shared by a run and its I/O.

    A token is done when ``cancel()`` was called or its deadline passed.
    Tokens derived with ``with_timeout`` share the parent's cancel signal
    and take the tighter of the two deadlines.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        _event: threading.Event | None = None,
        _deadline: float | None = None,
    ) -> None:
        """Initialize the token.

        Args:
            timeout_seconds: Optional budget from now; None for no deadline.
        """
        self._event = _event or threading.Event()
        deadline = _deadline
        if timeout_seconds is not None:
            own = time.monotonic() + timeout_seconds
            deadline = own if deadline is None else min(deadline, own)
        self._deadline = deadline

    def cancel(self) -> None:
        """Signal cancellation to every holder of this token."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Check whether cancel() was called."""
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        """Check whether the deadline has passed."""
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        """Check whether the token is cancelled or expired."""
        return self.cancelled or self.expired

    @property
    def reason(self) -> str | None:
        """Get why the token is done, or None while it is live."""
        if self.cancelled:
            return CANCELLED
        if self.expired:
            return DEADLINE_EXCEEDED
        return None

    def remaining(self) -> float | None:
        """Get seconds left before the deadline.

        Returns:
            Remaining seconds (never negative), or None without a deadline.
        """
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``, waking early when the token is done.

        Args:
            seconds: Time to wait.

        Returns:
            True if the token is done, False if the full wait elapsed.
        """
        if self.done:
            return True

        timeout = max(0.0, seconds)
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)

        if self._event.wait(timeout):
            return True
        return self.expired

    def with_timeout(self, timeout_seconds: float | None) -> "CancellationToken":
        """Derive a token bounded by an additional timeout.

        Args:
            timeout_seconds: Budget from now; None or 0 keeps only the
                parent's deadline.

        Returns:
            Derived token sharing this token's cancel signal.
        """
        return CancellationToken(
            timeout_seconds or None,
            _event=self._event,
            _deadline=self._deadline,
        )
