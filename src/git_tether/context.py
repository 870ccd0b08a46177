"""Cancellation and deadline signal shared by the pipeline operations."""

import threading
import time

from .errors import DeadlineExceeded, OperationCancelled


class Context:
    """Carries a cancellation flag and an optional deadline for one run.

    A single context is usually created per repository run and passed to every
    operation. Blocking calls check it periodically and abort promptly once it
    is done.

    Attributes:
        deadline (float | None): Monotonic clock value after which work is aborted.
    """

    def __init__(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """Initializes the context.

        Args:
            timeout (float | None, optional): Seconds from now until the deadline.
                                              Defaults to None (no deadline).
            cancel_event (threading.Event | None, optional): An externally owned
                                              event that cancels the run when set.
        """
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._event = cancel_event or threading.Event()

    @classmethod
    def background(cls) -> "Context":
        """Returns a context that is never cancelled and has no deadline."""
        return cls()

    def cancel(self) -> None:
        """Signals every operation using this context to stop."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        """Whether the context was cancelled or its deadline has passed."""
        if self.cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str) -> None:
        """Raises if the context is done.

        Args:
            operation (str): Name of the operation being guarded, for the message.

        Raises:
            OperationCancelled: If the context was cancelled.
            DeadlineExceeded: If the deadline has passed.
        """
        if self.cancelled:
            raise OperationCancelled(f"{operation}: cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded(f"{operation}: deadline exceeded")
