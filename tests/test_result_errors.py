"""Tests for the Result value object and the error taxonomy."""

from __future__ import annotations

import signal

from procpipe.errors import (
    Cancelled,
    ConfigurationError,
    DeadlineExceeded,
    ExecError,
    ProcPipeError,
    PTYUnsupportedError,
    attach_context,
    is_cancellation,
)
from procpipe.result import Result, first_error


def test_result_defaults_and_predicates():
    """A default Result never reached a normal exit."""

    res = Result()
    assert res.exit_code == -1
    assert res.err is None
    assert not res.ok()

    clean = Result(stdout="hi", exit_code=0)
    assert clean.ok()
    assert clean.is_exit_code(0)
    assert not clean.is_exit_code(1)


def test_nonzero_exit_is_not_ok_but_has_no_error():
    res = Result(exit_code=3)
    assert res.err is None
    assert not res.ok()


def test_is_signal_and_to_dict():
    res = Result(exit_code=-1, signal=signal.SIGTERM, duration=0.25)
    assert res.is_signal(signal.SIGTERM)
    assert res.is_signal(int(signal.SIGTERM))
    assert not res.is_signal(signal.SIGINT)

    payload = res.to_dict()
    assert payload["signal"] == "SIGTERM"
    assert payload["error"] is None
    assert payload["duration_s"] == 0.25


def test_to_dict_renders_error_type():
    res = Result(err=Cancelled())
    assert res.to_dict()["error"] == "Cancelled: context canceled"


def test_first_error_returns_first_in_order():
    one = ValueError("one")
    two = ValueError("two")
    results = [Result(exit_code=0), Result(err=one), Result(err=two)]
    assert first_error(results) is one
    assert first_error([Result(exit_code=0)]) is None


def test_exec_error_message_and_unwrap():
    cause = FileNotFoundError(2, "No such file or directory")
    err = ExecError(err=cause, stage="missing-bin")
    assert err.exit_code == -1
    assert err.unwrap() is cause
    assert err.cause is cause
    assert str(err) == str(cause)
    assert str(ExecError()) == "execution failed"


def test_procpipe_error_str_includes_stage():
    assert str(ProcPipeError("boom", stage="echo hi")) == "[echo hi] boom"
    assert str(ConfigurationError("bad")) == "bad"
    assert isinstance(PTYUnsupportedError("nope"), ConfigurationError)


def test_attach_context_preserves_existing_keys():
    err = ConfigurationError("bad", context={"a": 1})
    attach_context(err, {"a": 2, "b": 3})
    assert err.context == {"a": 1, "b": 3}


def test_is_cancellation_walks_wrapped_errors():
    assert is_cancellation(Cancelled())
    assert is_cancellation(ExecError(err=DeadlineExceeded()))
    assert not is_cancellation(ExecError(err=OSError("nope")))
    assert not is_cancellation(None)

    try:
        try:
            raise DeadlineExceeded()
        except DeadlineExceeded as exc:
            raise ConfigurationError("wrapped") from exc
    except ConfigurationError as outer:
        assert is_cancellation(outer)
