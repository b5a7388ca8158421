"""Deadline-aware cancellation scopes for blocking calls and sleeps."""

from __future__ import annotations

import threading
import time

from bkwait.errors import Cancelled, ContextError, DeadlineExceeded


class Context:
    """A cancellable scope with an optional deadline.

    Scopes form a tree: cancelling a scope cancels all scopes derived from
    it, never its parent.  Sleeps go through :meth:`sleep` so they wake up
    as soon as the scope is cancelled or its deadline passes.
    """

    def __init__(self, parent: Context | None = None, deadline: float | None = None) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline  # time.monotonic() value
        self._parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[Context] = []
        self._err: ContextError | None = None
        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> Context:
        return cls()

    def with_cancel(self) -> Context:
        return Context(parent=self)

    def with_timeout(self, seconds: float) -> Context:
        return Context(parent=self, deadline=time.monotonic() + seconds)

    def _adopt(self, child: Context) -> None:
        with self._lock:
            if self._err is None:
                self._children.append(child)
                return
            err = self._err
        child._finish(err)

    def _finish(self, err: ContextError) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            children, self._children = self._children, []
        self._event.set()
        for child in children:
            child._finish(err)

    def cancel(self) -> None:
        """Cancel this scope and its children; safe to call repeatedly."""
        self._finish(Cancelled())

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def err(self) -> ContextError | None:
        if self._err is None and self.deadline is not None and time.monotonic() >= self.deadline:
            self._finish(DeadlineExceeded())
        return self._err

    def done(self) -> bool:
        return self.err() is not None

    def check(self) -> None:
        err = self.err()
        if err is not None:
            raise err

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the scope finishes or *timeout* elapses; return done()."""
        remaining = self.remaining()
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
        self._event.wait(timeout)
        return self.done()

    def sleep(self, seconds: float) -> None:
        """Sleep for *seconds* unless the scope finishes first, then raise."""
        self.check()
        self.wait(seconds)
        self.check()
