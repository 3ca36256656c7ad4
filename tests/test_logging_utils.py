"""Tests for package logging and the shadow-print echo."""

from __future__ import annotations

import io
import logging

from procpipe.logging_utils import (
    ShadowConfig,
    ShadowContext,
    ShadowEvent,
    ShadowPhase,
    _fmt_hms_ms,
    format_shadow_line,
    get_logger,
)


def test_fmt_hms_ms_ranges():
    assert _fmt_hms_ms(0.0123) == "12ms"
    assert _fmt_hms_ms(1.5) == "1.500s"
    assert _fmt_hms_ms(75.25) == "01:15.250"
    assert _fmt_hms_ms(3725.0) == "1:02:05.000"
    assert _fmt_hms_ms(-1) == "0ms"


def test_get_logger_configures_package_logger_once():
    root = get_logger()
    assert root.name == "procpipe"
    handlers = list(root.handlers)
    assert get_logger() is root
    assert root.handlers == handlers
    assert get_logger("procpipe.pipeline.stage") is logging.getLogger("procpipe.pipeline.stage")
    assert get_logger("extra").name == "procpipe.extra"


def test_format_shadow_line_default_and_async():
    event = ShadowEvent(command="ls -l", raw_command="ls -l", phase=ShadowPhase.AFTER, duration=0.5, is_async=True)
    line = format_shadow_line(ShadowConfig(prefix="ci"), event)
    assert "ci > " in line
    assert "ls -l" in line
    assert "(500ms, async)" in line


def test_shadow_context_spacing_around_output():
    stream = io.StringIO()
    shadow = ShadowContext(
        command="echo hi",
        config=ShadowConfig(prefix="p", formatter=None),
        stream=stream,
    ).begin()
    shadow.observe(b"partial")
    shadow.finish()
    lines = stream.getvalue().split("\n")
    # leading separator, then two newlines because the output lacked one
    assert "p > " in lines[0]
    assert lines[1:4] == ["", "", ""]
    assert "p > " in lines[4]


def test_shadow_context_formatter_disables_spacing():
    stream = io.StringIO()
    shadow = ShadowContext(
        command="secret-cmd",
        config=ShadowConfig(mask=lambda text: "***", formatter=lambda event: f"{event.phase.value} {event.command}"),
        stream=stream,
    ).begin()
    shadow.observe(b"out\n")
    shadow.finish()
    assert stream.getvalue() == "before ***\nafter ***\n"
