"""
Context - deadline and cancellation signal passed to every lock operation
"""
import threading
import time
from typing import List, Optional

from dblock.errors import CancellationError, Cancelled, DeadlineExceeded


class Context:
    """
    Carries an optional deadline (``time.monotonic()`` based) and a
    cancellation flag. Child contexts inherit the parent's deadline and are
    cancelled together with the parent.
    """

    def __init__(self, deadline: Optional[float] = None, parent: Optional["Context"] = None):
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline
        self._parent = parent
        self._children: List["Context"] = []
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> "Context":
        return cls()

    def with_deadline(self, deadline: float) -> "Context":
        return Context(deadline=deadline, parent=self)

    def with_timeout(self, seconds: float) -> "Context":
        return Context(deadline=time.monotonic() + seconds, parent=self)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, None if there is none"""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self):
        self._cancelled.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def close(self):
        """Detach from the parent so it stops tracking this context"""
        if self._parent is not None:
            self._parent._detach(self)
            self._parent = None

    def err(self) -> Optional[CancellationError]:
        if self._cancelled.is_set():
            return Cancelled()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DeadlineExceeded()
        return None

    def done(self) -> bool:
        return self.err() is not None

    def raise_if_done(self):
        err = self.err()
        if err is not None:
            raise err

    def wait(self, seconds: float) -> bool:
        """
        Block for up to ``seconds``. Wakes early on cancellation or when the
        deadline passes. Returns True if the context is done.
        """
        end = time.monotonic() + seconds
        if self._deadline is not None:
            end = min(end, self._deadline)
        while not self.done():
            left = end - time.monotonic()
            if left <= 0:
                break
            self._cancelled.wait(left)
        return self.done()

    def _attach(self, child: "Context"):
        with self._lock:
            self._children.append(child)
        if self._cancelled.is_set():
            child.cancel()

    def _detach(self, child: "Context"):
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def background() -> Context:
    return Context.background()
