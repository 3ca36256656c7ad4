"""Tests for pipeline wiring, start/wait orchestration and reduction."""

from __future__ import annotations

import os
import sys

import pytest

from procpipe import Command
from procpipe.errors import ConfigurationError, ExecError
from procpipe.pipeline import PipeMode, Pipeline, StageDescriptor, validate_pty

PY = sys.executable
UPPER = "import sys; sys.stdout.write(sys.stdin.read().upper())"
POSIX_PTY = pytest.mark.skipif(
    not sys.platform.startswith(("linux", "darwin")), reason="pseudo-terminals required"
)


def _py(code: str, **kwargs) -> StageDescriptor:
    env = tuple(f"{key}={value}" for key, value in os.environ.items())
    return StageDescriptor(name=PY, args=("-c", code), env=env, **kwargs)


def test_stdout_flows_into_next_stage_and_is_still_captured():
    pipeline = Pipeline.materialize(
        [
            _py("print('go', end='')"),
            _py(UPPER),
            _py("import sys; sys.stdout.write(sys.stdin.read() + '!')"),
        ]
    )
    pipeline.run()
    results = pipeline.results()
    assert [res.stdout for res in results] == ["go", "GO", "GO!"]
    primary, combined = pipeline.primary_result(PipeMode.STRICT)
    assert primary.stdout == "GO!"
    assert combined == ""


def test_large_output_does_not_deadlock():
    pipeline = Pipeline.materialize(
        [
            _py("import sys; sys.stdout.write('y' * 1000000)"),
            _py("import sys; print(len(sys.stdin.read()))"),
        ]
    )
    pipeline.run()
    assert pipeline.results()[1].stdout.strip() == "1000000"
    assert len(pipeline.results()[0].stdout) == 1000000


def test_start_failure_marks_later_stages():
    pipeline = Pipeline.materialize(
        [
            StageDescriptor(name="/nonexistent/procpipe-missing-binary"),
            _py("print('never')"),
        ]
    )
    pipeline.run()
    first, second = pipeline.results()
    assert first.exit_code == second.exit_code == -1
    assert isinstance(first.err, ExecError)
    assert isinstance(second.err, ExecError)
    assert first.err.unwrap() is second.err.unwrap()
    assert pipeline.spawned() == []


def test_upstream_completes_when_downstream_fails_to_start():
    pipeline = Pipeline.materialize(
        [
            _py("import sys; sys.stdout.write('z' * 500000)"),
            StageDescriptor(name="/nonexistent/procpipe-missing-binary"),
        ]
    )
    pipeline.run()
    upstream, downstream = pipeline.results()
    assert upstream.exit_code == 0
    assert len(upstream.stdout) == 500000
    assert isinstance(downstream.err, ExecError)
    assert pipeline.stages[0].pipe_sink is not None and pipeline.stages[0].pipe_sink.broken
    primary, _ = pipeline.primary_result(PipeMode.STRICT)
    assert primary.exit_code == -1
    assert isinstance(primary.err, ExecError)


def test_strict_and_best_effort_reduction():
    descriptors = [_py("import sys; sys.exit(2)"), _py("print('ok', end='')")]

    strict = Pipeline.materialize(descriptors)
    strict.run()
    primary, _ = strict.primary_result(PipeMode.STRICT)
    assert primary.exit_code == 2

    best = Pipeline.materialize(descriptors)
    best.run()
    primary, _ = best.primary_result(PipeMode.BEST_EFFORT)
    assert primary.exit_code == 0
    assert primary.stdout == "ok"


def test_combined_output_belongs_to_primary_stage():
    pipeline = Pipeline.materialize(
        [
            _py("import sys; print('first-out'); print('first-err', file=sys.stderr)"),
            _py("import sys; sys.stdin.read(); print('last-out'); print('last-err', file=sys.stderr); sys.exit(5)"),
        ],
        with_combined=True,
    )
    pipeline.run()
    primary, combined = pipeline.primary_result(PipeMode.STRICT)
    assert primary.exit_code == 5
    assert "last-out" in combined
    assert "last-err" in combined
    assert "first-out" not in combined


def test_validate_pty_rejects_pipelines():
    with pytest.raises(ConfigurationError, match="pipelines"):
        validate_pty([_py("pass", use_pty=True), _py("pass")])
    validate_pty([_py("pass"), _py("pass")])


def test_pipeline_requires_a_stage():
    with pytest.raises(ValueError):
        Pipeline([])


@pytest.fixture
def terminal():
    """Yield ``(master_fd, text_stream)`` for a fresh pseudo-terminal."""

    master, slave = os.openpty()
    stream = open(slave, "w")
    try:
        yield master, stream
    finally:
        stream.close()
        os.close(master)


@POSIX_PTY
def test_terminal_writer_without_listeners_bypasses_capture(terminal):
    master, stream = terminal
    res = Command(PY, "-c", "print('hello')").stdout_writer(stream).run()
    assert res.exit_code == 0
    assert res.err is None
    assert res.stdout == ""
    assert b"hello" in os.read(master, 1024)


@POSIX_PTY
def test_terminal_writer_on_upstream_stage_still_feeds_pipe(terminal):
    master, stream = terminal
    results = (
        Command(PY, "-c", "print('hello')")
        .stdout_writer(stream)
        .pipe(PY, "-c", "import sys; print(sys.stdin.read().upper(), end='')")
        .pipeline_results()
    )
    upstream, downstream = results
    assert upstream.err is None
    assert upstream.stdout == ""
    assert downstream.err is None
    assert downstream.stdout == "HELLO\n"
    assert b"hello" in os.read(master, 1024)
