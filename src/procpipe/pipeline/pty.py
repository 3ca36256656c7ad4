"""Pseudo-terminal capability with per-platform implementations."""

from __future__ import annotations

import logging
import os
import sys
from abc import ABC, abstractmethod

from ..errors import PTYUnsupportedError

logger = logging.getLogger(__name__)

_PTY_PLATFORMS = ("linux", "darwin")
_UNSUPPORTED = "with_pty is not supported on this platform"


class PTYBackend(ABC):
    """Open master/slave pairs for stages that request terminal capture."""

    name: str = "abstract"

    @abstractmethod
    def check(self) -> None:
        """Raise :class:`PTYUnsupportedError` when PTYs are unavailable."""

    @abstractmethod
    def open(self) -> tuple[int, int]:
        """Return ``(master_fd, slave_fd)``."""


class PosixPTY(PTYBackend):
    name = "posix"

    def check(self) -> None:
        return None

    def open(self) -> tuple[int, int]:
        master, slave = os.openpty()
        logger.debug("opened pty master=%d slave=%d", master, slave)
        return master, slave


class UnsupportedPTY(PTYBackend):
    name = "unsupported"

    def check(self) -> None:
        raise PTYUnsupportedError(_UNSUPPORTED)

    def open(self) -> tuple[int, int]:
        raise PTYUnsupportedError(_UNSUPPORTED)


def select_backend(platform: str | None = None) -> PTYBackend:
    platform = sys.platform if platform is None else platform
    if platform.startswith(_PTY_PLATFORMS):
        return PosixPTY()
    return UnsupportedPTY()


_backend: PTYBackend = select_backend()


def get_backend() -> PTYBackend:
    return _backend


def set_backend(backend: PTYBackend) -> PTYBackend:
    """Install ``backend`` and return the previous one."""
    global _backend
    previous, _backend = _backend, backend
    return previous


__all__ = [
    "PTYBackend",
    "PosixPTY",
    "UnsupportedPTY",
    "get_backend",
    "select_backend",
    "set_backend",
]
