"""Tests for the OS process-control capability."""

from __future__ import annotations

import signal
import sys

import pytest

from procpipe import Command
from procpipe.pipeline import sysproc
from procpipe.pipeline.sysproc import (
    LinuxControls,
    NoopControls,
    PosixControls,
    SysProcAttr,
    WindowsControls,
    select_controls,
)


def test_default_attr():
    assert SysProcAttr().is_default()
    assert not SysProcAttr(setpgid=True).is_default()


def test_select_controls_by_platform():
    assert isinstance(select_controls("linux"), LinuxControls)
    assert isinstance(select_controls("darwin"), PosixControls)
    assert isinstance(select_controls("freebsd14"), PosixControls)
    assert isinstance(select_controls("win32"), WindowsControls)
    assert isinstance(select_controls("emscripten"), NoopControls)


def test_posix_controls_map_group_and_session():
    controls = PosixControls()
    assert controls.popen_kwargs(SysProcAttr(setpgid=True)) == {"process_group": 0}
    assert controls.popen_kwargs(SysProcAttr(setsid=True, setpgid=True)) == {"start_new_session": True}
    assert controls.popen_kwargs(SysProcAttr(pdeathsig=9, hide_window=True)) == {}


def test_unsupported_controls_are_noops():
    attr = SysProcAttr(setpgid=True, setsid=True, pdeathsig=9, creation_flags=8, hide_window=True)
    assert NoopControls().popen_kwargs(attr) == {}
    assert WindowsControls().popen_kwargs(SysProcAttr(creation_flags=0x200)) == {"creationflags": 0x200}


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="prctl is Linux only")
def test_linux_pdeathsig_installs_preexec():
    kwargs = LinuxControls().popen_kwargs(SysProcAttr(pdeathsig=signal.SIGTERM))
    assert callable(kwargs["preexec_fn"])

    res = Command(sys.executable, "-c", "print('alive')").pdeathsig(signal.SIGTERM).run()
    assert res.ok()
    assert res.stdout.strip() == "alive"


def test_installed_controls_receive_stage_attributes():
    seen: list[SysProcAttr] = []

    class _Recording(NoopControls):
        def popen_kwargs(self, attr: SysProcAttr):
            seen.append(attr)
            return {}

    previous = sysproc.set_controls(_Recording())
    try:
        res = Command(sys.executable, "-c", "pass").setsid().setpgid().run()
    finally:
        sysproc.set_controls(previous)
    assert res.ok()
    assert seen and seen[0].setsid and seen[0].setpgid
