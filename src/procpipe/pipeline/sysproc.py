"""OS process controls translated into ``subprocess.Popen`` keyword arguments.

Each platform implements :class:`ProcessControls`; controls a platform does
not support are ignored rather than rejected, so command chains stay
portable.
"""

from __future__ import annotations

import ctypes
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_PR_SET_PDEATHSIG = 1


@dataclass(slots=True)
class SysProcAttr:
    setpgid: bool = False
    setsid: bool = False
    pdeathsig: int | None = None
    creation_flags: int = 0
    hide_window: bool = False

    def is_default(self) -> bool:
        return self == SysProcAttr()


class ProcessControls(ABC):
    name: str = "abstract"

    @abstractmethod
    def popen_kwargs(self, attr: SysProcAttr) -> dict[str, Any]:
        """Return extra ``Popen`` keyword arguments implementing ``attr``."""


class NoopControls(ProcessControls):
    name = "noop"

    def popen_kwargs(self, attr: SysProcAttr) -> dict[str, Any]:
        return {}


class PosixControls(ProcessControls):
    """Process group and session controls available on every POSIX system."""

    name = "posix"

    def popen_kwargs(self, attr: SysProcAttr) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if attr.setsid:
            kwargs["start_new_session"] = True
        elif attr.setpgid:
            kwargs["process_group"] = 0
        return kwargs


class LinuxControls(PosixControls):
    """POSIX controls plus the parent-death signal."""

    name = "linux"

    def popen_kwargs(self, attr: SysProcAttr) -> dict[str, Any]:
        kwargs = PosixControls.popen_kwargs(self, attr)
        if attr.pdeathsig:
            kwargs["preexec_fn"] = _pdeathsig_preexec(int(attr.pdeathsig))
        return kwargs


class WindowsControls(ProcessControls):
    name = "windows"

    def popen_kwargs(self, attr: SysProcAttr) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if attr.creation_flags:
            kwargs["creationflags"] = int(attr.creation_flags)
        if attr.hide_window:
            startupinfo = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
            startupinfo.wShowWindow = 0  # SW_HIDE
            kwargs["startupinfo"] = startupinfo
        return kwargs


def _pdeathsig_preexec(sig: int) -> Callable[[], None]:
    # libc must be loaded before fork; only the prctl call runs in the child.
    libc = ctypes.CDLL(None, use_errno=True)

    def _apply() -> None:
        libc.prctl(_PR_SET_PDEATHSIG, sig, 0, 0, 0)

    return _apply


def select_controls(platform: str | None = None) -> ProcessControls:
    platform = sys.platform if platform is None else platform
    if platform.startswith("linux"):
        return LinuxControls()
    if platform.startswith("win"):
        return WindowsControls()
    if platform == "darwin" or "bsd" in platform:
        return PosixControls()
    return NoopControls()


_controls: ProcessControls = select_controls()


def get_controls() -> ProcessControls:
    return _controls


def set_controls(controls: ProcessControls) -> ProcessControls:
    """Install ``controls`` and return the previous implementation."""
    global _controls
    previous, _controls = _controls, controls
    return previous


__all__ = [
    "LinuxControls",
    "NoopControls",
    "PosixControls",
    "ProcessControls",
    "SysProcAttr",
    "WindowsControls",
    "get_controls",
    "select_controls",
    "set_controls",
]
