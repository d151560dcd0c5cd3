"""
Per-call cancellation and deadline handling.

A Context is handed to every SDK operation. It can be cancelled from another
thread and optionally carries a deadline; the dispatcher checks it before the
request is sent and between response chunks.
"""

import threading
import time


class Context:
    """Cancellation signal plus optional deadline for a single call (or a group of calls)."""

    def __init__(self, timeout: float | None = None):
        """
        Create a context.

        Args:
            timeout: Seconds from now until the deadline (None for no deadline)

        """
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> "Context":
        """A context that is never cancelled and has no deadline."""
        return cls()

    @property
    def deadline(self) -> float | None:
        """Deadline as a time.monotonic() value."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cancel(self) -> None:
        """Cancel every call bound to this context. Safe to call from any thread."""
        self._cancelled.set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None if there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())
