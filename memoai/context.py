"""
Cancellation and deadline propagation for blocking calls.

Every public entry point takes a Context. Child contexts created with
with_timeout() inherit cancellation from their parent and can only shorten
the deadline, never extend it.
"""

import threading
import time
import weakref
from typing import Optional

from .errors import CancelledError, DeadlineExceededError


class Context:
    """A cancellable scope with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None, parent: Optional["Context"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: "weakref.WeakSet[Context]" = weakref.WeakSet()

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline: Optional[float] = deadline

        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "Context") -> None:
        with self._lock:
            if self._event.is_set():
                child.cancel()
                return
            self._children.add(child)

    def with_timeout(self, seconds: float) -> "Context":
        """Return a child context that expires after `seconds`."""
        return Context(timeout=seconds, parent=self)

    def cancel(self) -> None:
        """Cancel this context and all of its children."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None if there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        return self.cancelled or self.expired

    def check(self) -> None:
        """Raise if the context has been cancelled or its deadline passed."""
        if self.cancelled:
            raise CancelledError()
        if self.expired:
            raise DeadlineExceededError()

    def sleep(self, seconds: float) -> None:
        """
        Wait up to `seconds`, returning early with an error on cancellation.

        Raises:
            CancelledError: If the context is cancelled during the wait
            DeadlineExceededError: If the deadline passes during the wait
        """
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            self.check()
            raise DeadlineExceededError()
        if self._event.wait(seconds):
            raise CancelledError()


def background() -> Context:
    """A fresh root context with no deadline."""
    return Context()
