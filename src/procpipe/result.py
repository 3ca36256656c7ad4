"""Immutable per-stage outcome reported to callers."""

from __future__ import annotations

import signal as _signal
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

__all__ = ["Result", "first_error"]


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of one stage (or the primary stage of a pipeline).

    ``exit_code`` is ``-1`` when the process never reached a normal exit
    (spawn failure, killed by a signal, cancelled).  A nonzero exit code is
    not an error by itself: ``err`` is only set for spawn failures and
    cancellation.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    err: BaseException | None = None
    duration: float = 0.0
    signal: _signal.Signals | None = None

    def ok(self) -> bool:
        """Report whether the command exited cleanly without errors."""
        return self.err is None and self.exit_code == 0

    def is_exit_code(self, code: int) -> bool:
        return self.exit_code == code

    def is_signal(self, sig: int) -> bool:
        """Report whether the command terminated due to ``sig``."""
        return self.signal is not None and int(self.signal) == int(sig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "error": None if self.err is None else f"{type(self.err).__name__}: {self.err}",
            "duration_s": round(self.duration, 6),
            "signal": None if self.signal is None else self.signal.name,
        }


def first_error(results: Iterable[Result]) -> BaseException | None:
    """Return the first non-``None`` stage error in declaration order."""
    for res in results:
        if res.err is not None:
            return res.err
    return None
