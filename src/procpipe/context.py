"""Cancellation and deadline signals bound to pipeline stages.

A :class:`Context` fires at most once.  Once fired, :meth:`Context.err`
reports why (:class:`~procpipe.errors.Cancelled` or
:class:`~procpipe.errors.DeadlineExceeded`) and every stage spawned with the
context bound is killed by the engine.  Children fire with their parent.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime

from .errors import Cancelled, ContextError, DeadlineExceeded

logger = logging.getLogger(__name__)

__all__ = [
    "Context",
    "background",
    "with_cancel",
    "with_deadline",
    "with_timeout",
]


class Context:
    """One-shot cancellation signal with an optional deadline."""

    def __init__(self, parent: Context | None = None, deadline: float | None = None):
        self._parent = parent
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._err: ContextError | None = None
        self._callbacks: list[Callable[[ContextError], None]] = []
        self._timer: threading.Timer | None = None

        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            parent.add_done_callback(self._fire)
        if deadline is not None and not self._done.is_set():
            remaining = deadline - time.time()
            if remaining <= 0:
                self._fire(DeadlineExceeded())
            else:
                self._timer = threading.Timer(remaining, self._fire, args=(DeadlineExceeded(),))
                self._timer.daemon = True
                self._timer.start()

    @property
    def deadline(self) -> float | None:
        """UNIX timestamp at which the context fires on its own, if any."""
        return self._deadline

    @property
    def done(self) -> threading.Event:
        return self._done

    def err(self) -> ContextError | None:
        """Return the reason the context fired, or ``None`` while it is live."""
        if self._err is None and self._deadline is not None and time.time() >= self._deadline:
            self._fire(DeadlineExceeded())
        return self._err

    def cancel(self) -> None:
        self._fire(Cancelled())

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def add_done_callback(self, callback: Callable[[ContextError], None]) -> None:
        """Run ``callback(err)`` when the context fires (immediately if it has)."""
        with self._lock:
            if self._err is None:
                self._callbacks.append(callback)
                return
            err = self._err
        callback(err)

    def remove_done_callback(self, callback: Callable[[ContextError], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def _fire(self, err: ContextError) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        logger.debug("context fired: %s", err)
        self._done.set()
        for callback in callbacks:
            callback(err)

    def __repr__(self) -> str:
        state = "live" if self._err is None else str(self._err)
        return f"Context(deadline={self._deadline!r}, state={state!r})"


def background() -> Context:
    """Return a context that never fires on its own."""
    return Context()


def with_cancel(parent: Context | None = None) -> Context:
    return Context(parent)


def with_timeout(seconds: float, parent: Context | None = None) -> Context:
    """Return a context that fires ``seconds`` from now (or with ``parent``)."""
    return Context(parent, deadline=time.time() + float(seconds))


def with_deadline(when: float | datetime, parent: Context | None = None) -> Context:
    """Return a context that fires at ``when`` (UNIX timestamp or ``datetime``)."""
    if isinstance(when, datetime):
        when = when.timestamp()
    return Context(parent, deadline=float(when))
