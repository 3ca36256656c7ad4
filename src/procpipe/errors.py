"""Unified error types for procpipe.

Execution failures are reported on :class:`~procpipe.result.Result` objects
rather than raised, so callers need a small, predictable hierarchy to inspect
them.  Every error carries the stage it belongs to (the display string of the
command) and a serialisable context payload so that callers (CLI, scripts,
notebooks) can render actionable messages.
"""

from __future__ import annotations

import signal as _signal
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ProcPipeError",
    "ExecError",
    "ConfigurationError",
    "PTYUnsupportedError",
    "ProcessNotStartedError",
    "ContextError",
    "Cancelled",
    "DeadlineExceeded",
    "attach_context",
    "is_cancellation",
]


@dataclass(slots=True, eq=False)
class ProcPipeError(RuntimeError):
    """Base class for procpipe failures.

    Attributes
    ----------
    message:
        Human readable description of the failure.
    stage:
        Optional stage identifier (``None`` for configuration level issues).
    context:
        JSON serialisable dictionary with granular diagnostics.
    cause:
        Underlying exception (kept for debugging, not included in ``__str__``).
    """

    message: str
    stage: str | None = None
    context: MutableMapping[str, Any] = field(default_factory=dict)
    cause: BaseException | None = None

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = {}

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


@dataclass(slots=True, eq=False)
class ExecError(ProcPipeError):
    """A stage could not be started or failed before reaching a normal exit.

    ``err`` is the underlying OS or cancellation error; :meth:`unwrap` exposes
    it so that predicates such as :func:`is_cancellation` can look through.
    """

    message: str = ""
    err: BaseException | None = None
    exit_code: int = -1
    signal: _signal.Signals | None = None
    stderr: str = ""

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = {}
        if self.cause is None:
            self.cause = self.err
        if not self.message:
            self.message = str(self.err) if self.err is not None else "execution failed"

    def __str__(self) -> str:
        return self.message

    def unwrap(self) -> BaseException | None:
        return self.err


class ConfigurationError(ProcPipeError):
    """Raised when a command chain or configuration is invalid."""


class PTYUnsupportedError(ConfigurationError):
    """Pseudo-terminal capture was requested on a platform without PTYs."""


class ProcessNotStartedError(ProcPipeError):
    """A signal was sent to a process handle with no spawned stage."""


class ContextError(Exception):
    """Base class for the errors a fired :class:`~procpipe.context.Context` reports."""


class Cancelled(ContextError):
    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(ContextError):
    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


def attach_context(
    error: ProcPipeError,
    context: Mapping[str, Any] | None,
) -> ProcPipeError:
    """Merge ``context`` into ``error.context`` preserving existing keys."""

    if not context:
        return error
    for key, value in context.items():
        error.context.setdefault(key, value)
    return error


def is_cancellation(error: BaseException | None) -> bool:
    """Return ``True`` when ``error`` is, or wraps, a :class:`ContextError`."""

    seen: set[int] = set()
    current = error
    while current is not None and id(current) not in seen:
        if isinstance(current, ContextError):
            return True
        seen.add(id(current))
        if isinstance(current, ExecError) and current.err is not None:
            current = current.err
        else:
            current = current.__cause__
    return False
