"""Tests for pseudo-terminal capture and its platform capability."""

from __future__ import annotations

import sys

import pytest

from procpipe import Command, ConfigurationError, PTYUnsupportedError
from procpipe.pipeline import pty

PY = sys.executable
PTY_PLATFORM = pytest.mark.skipif(
    not sys.platform.startswith(("linux", "darwin")), reason="pseudo-terminals required"
)


@pytest.fixture
def unsupported_backend():
    previous = pty.set_backend(pty.UnsupportedPTY())
    try:
        yield
    finally:
        pty.set_backend(previous)


def test_select_backend_by_platform():
    assert isinstance(pty.select_backend("linux"), pty.PosixPTY)
    assert isinstance(pty.select_backend("darwin"), pty.PosixPTY)
    assert isinstance(pty.select_backend("win32"), pty.UnsupportedPTY)


@PTY_PLATFORM
def test_pty_merges_stderr_into_stdout():
    res = Command(
        PY, "-c", "import sys; print('to-out'); print('to-err', file=sys.stderr)"
    ).with_pty().run()
    assert res.err is None
    assert res.exit_code == 0
    assert res.stderr == ""
    assert "to-out" in res.stdout
    assert "to-err" in res.stdout


@PTY_PLATFORM
def test_child_sees_a_terminal():
    out = Command(PY, "-c", "import sys; print(sys.stdout.isatty(), sys.stderr.isatty())").with_pty().output()
    assert out.strip() == "True True"


@PTY_PLATFORM
def test_pty_line_callbacks_receive_every_line():
    out_lines: list[str] = []
    err_lines: list[str] = []
    Command(PY, "-c", "import sys; print('a'); print('b', file=sys.stderr)").with_pty().on_stdout(
        out_lines.append
    ).on_stderr(err_lines.append).run()
    assert sorted(out_lines) == ["a", "b"]
    assert sorted(err_lines) == ["a", "b"]


def test_pty_with_pipeline_is_a_configuration_error():
    cmd = Command(PY, "-c", "print('x')").with_pty().pipe(PY, "-c", "pass")
    res = cmd.run()
    assert res.exit_code == -1
    assert isinstance(res.err, ConfigurationError)
    with pytest.raises(ConfigurationError):
        cmd.combined_output()
    with pytest.raises(ConfigurationError):
        cmd.pipeline_results()


def test_unsupported_platform_is_reported(unsupported_backend):
    cmd = Command(PY, "-c", "print('x')").with_pty()
    res = cmd.run()
    assert res.exit_code == -1
    assert isinstance(res.err, PTYUnsupportedError)

    proc = cmd.start()
    assert proc.done()
    assert isinstance(proc.wait().err, PTYUnsupportedError)
