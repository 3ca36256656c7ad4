from __future__ import annotations

import logging
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TextIO

from .config import default_config

_PACKAGE_LOGGER = "procpipe"

# ANSI styling used for the shadow print echo.
_BOLD_DIM = "\x1b[1;90m"
_DIM = "\x1b[90m"
_FADED = "\x1b[38;5;247m"
_RESET = "\x1b[0m"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger (or a child), configuring it on first use."""

    root = logging.getLogger(_PACKAGE_LOGGER)
    if not root.handlers:
        level = default_config().log_level_value
        handler = logging.StreamHandler()
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("[%(name)s] %(levelname)s: %(message)s"))
        root.addHandler(handler)
        root.setLevel(level)
    if name is None or name == _PACKAGE_LOGGER:
        return root
    if name.startswith(_PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return root.getChild(name)


def _fmt_hms_ms(seconds: float) -> str:
    """Return a human readable string with millisecond precision."""

    safe_ms = max(0.0, float(seconds) * 1000.0)
    if safe_ms < 1000.0:
        return f"{int(round(safe_ms))}ms"
    if safe_ms < 60_000.0:
        return f"{safe_ms / 1000.0:.3f}s"

    base_seconds = int(safe_ms / 1000.0)
    fractional_ms = int(round(safe_ms - base_seconds * 1000))
    if fractional_ms == 1000:
        base_seconds += 1
        fractional_ms = 0
    hours, remainder = divmod(base_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    return f"{minutes:02d}:{secs:02d}.{fractional_ms:03d}"


class ShadowPhase(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True, slots=True)
class ShadowEvent:
    """Details handed to a custom shadow formatter."""

    command: str
    raw_command: str
    phase: ShadowPhase
    duration: float
    is_async: bool


@dataclass(slots=True)
class ShadowConfig:
    prefix: str = ""
    mask: Callable[[str], str] | None = None
    formatter: Callable[[ShadowEvent], str] | None = None


def format_shadow_line(config: ShadowConfig, event: ShadowEvent) -> str:
    if config.formatter is not None:
        return config.formatter(event)
    prefix = config.prefix or default_config().shadow_prefix
    timing = ""
    if event.phase is ShadowPhase.AFTER:
        timing = f" ({_fmt_hms_ms(event.duration)}{', async' if event.is_async else ''})"
    elif event.is_async:
        timing = " (async)"
    return f"{_BOLD_DIM}{prefix} > {_RESET}{_DIM}{event.command}{_FADED}{timing}{_RESET}"


@dataclass(slots=True)
class ShadowContext:
    """Echo a command line to stderr before and after it runs.

    With the default formatter the echo is separated from child output by a
    blank line on each side; the writers report every chunk through
    :meth:`observe` so the trailing separator can account for a missing
    final newline.
    """

    command: str
    config: ShadowConfig
    is_async: bool = False
    stream: TextIO | None = None
    start: float = field(default_factory=time.perf_counter)
    output_seen: bool = False
    last_output_ended_with_newline: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def spacing(self) -> bool:
        return self.config.formatter is None

    def _out(self) -> TextIO:
        return self.stream if self.stream is not None else sys.stderr

    def _emit(self, phase: ShadowPhase, duration: float) -> None:
        command = self.command
        if self.config.mask is not None:
            command = self.config.mask(command)
        event = ShadowEvent(
            command=command,
            raw_command=self.command,
            phase=phase,
            duration=duration,
            is_async=self.is_async,
        )
        line = format_shadow_line(self.config, event)
        if line:
            out = self._out()
            out.write(line + "\n")
            out.flush()

    def begin(self) -> ShadowContext:
        self.start = time.perf_counter()
        self._emit(ShadowPhase.BEFORE, 0.0)
        return self

    def observe(self, data: bytes) -> None:
        if not self.spacing or not data:
            return
        with self._lock:
            if not self.output_seen:
                self.output_seen = True
                if data[:1] not in (b"\n", b"\r"):
                    self._out().write("\n")
            self.last_output_ended_with_newline = data.endswith(b"\n")

    def finish(self) -> None:
        if self.spacing and self.output_seen:
            with self._lock:
                ended = self.last_output_ended_with_newline
            self._out().write("\n" if ended else "\n\n")
        self._emit(ShadowPhase.AFTER, time.perf_counter() - self.start)


__all__ = [
    "ShadowConfig",
    "ShadowContext",
    "ShadowEvent",
    "ShadowPhase",
    "format_shadow_line",
    "get_logger",
    "_fmt_hms_ms",
]
