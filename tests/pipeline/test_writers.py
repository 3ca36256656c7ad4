"""Tests for the output sinks wired into stage copy threads."""

from __future__ import annotations

import io
import logging
import os

from procpipe.logging_utils import ShadowConfig, ShadowContext
from procpipe.pipeline.writers import (
    CaptureBuffer,
    FanOut,
    LineWriter,
    PipeSink,
    ShadowWriter,
    TextSink,
    build_pty_writer,
    build_stream_writer,
    is_terminal_writer,
)


def test_line_writer_splits_across_chunks_and_strips_cr():
    lines: list[str] = []
    writer = LineWriter(lines.append)
    writer.write(b"alpha\r\nbe")
    writer.write(b"ta\n\ngam")
    writer.write(b"ma")
    assert lines == ["alpha", "beta", ""]


def test_line_writer_feeds_every_callback():
    first: list[str] = []
    second: list[str] = []
    writer = LineWriter(first.append, None, second.append)
    writer.write(b"one\ntwo\n")
    assert first == second == ["one", "two"]


def test_capture_buffer_text_replaces_invalid_utf8():
    buf = CaptureBuffer()
    buf.write(b"ok ")
    buf.write(b"\xff")
    assert len(buf) == 4
    assert buf.getvalue() == b"ok \xff"
    assert buf.text() == "ok �"


def test_text_sink_decodes_split_multibyte_sequences():
    stream = io.StringIO()
    sink = TextSink(stream)
    encoded = "héllo".encode("utf-8")
    sink.write(encoded[:2])
    sink.write(encoded[2:])
    assert stream.getvalue() == "héllo"


def test_fan_out_writes_in_order():
    order: list[str] = []

    class _Recorder:
        def __init__(self, label: str):
            self.label = label

        def write(self, data: bytes) -> None:
            order.append(f"{self.label}:{data.decode()}")

    FanOut([_Recorder("a"), _Recorder("b")]).write(b"x")
    assert order == ["a:x", "b:x"]


def test_pipe_sink_delivers_then_discards_after_reader_closes():
    read_fd, write_fd = os.pipe()
    sink = PipeSink(write_fd)
    sink.write(b"payload")
    assert os.read(read_fd, 100) == b"payload"

    os.close(read_fd)
    sink.write(b"more")
    assert sink.broken
    sink.write(b"ignored")

    sink.close()
    sink.close()
    assert sink.closed


def test_build_stream_writer_fans_out_to_raw_buffer_and_callback():
    raw = io.BytesIO()
    buf = CaptureBuffer()
    combined = CaptureBuffer()
    lines: list[str] = []
    writer = build_stream_writer(raw, lines.append, buf, combined)
    writer.write(b"hello\nworld")
    assert raw.getvalue() == b"hello\nworld"
    assert buf.getvalue() == b"hello\nworld"
    assert combined.getvalue() == b"hello\nworld"
    assert lines == ["hello"]


def test_build_stream_writer_without_extras_is_the_buffer():
    buf = CaptureBuffer()
    assert build_stream_writer(None, None, buf, None) is buf


def test_in_memory_streams_are_not_terminals():
    assert not is_terminal_writer(io.BytesIO())
    assert not is_terminal_writer(None)


def test_pty_writer_delivers_every_line_to_both_callbacks():
    buf = CaptureBuffer()
    out_lines: list[str] = []
    err_lines: list[str] = []
    writer = build_pty_writer(None, None, out_lines.append, err_lines.append, buf, None)
    writer.write(b"out\r\nerr\r\n")
    assert out_lines == err_lines == ["out", "err"]
    assert buf.text() == "out\r\nerr\r\n"


def test_shadow_writer_tracks_trailing_newline():
    stream = io.StringIO()
    shadow = ShadowContext(command="echo hi", config=ShadowConfig(prefix="t"), stream=stream)
    buf = CaptureBuffer()
    writer = ShadowWriter(buf, shadow)
    writer.write(b"hi")
    assert shadow.output_seen
    assert not shadow.last_output_ended_with_newline
    writer.write(b"\n")
    assert shadow.last_output_ended_with_newline
    assert buf.getvalue() == b"hi\n"


def test_pipe_sink_logs_when_downstream_goes_away(caplog):
    read_fd, write_fd = os.pipe()
    os.close(read_fd)
    sink = PipeSink(write_fd)
    with caplog.at_level(logging.DEBUG, logger="procpipe.pipeline.writers"):
        sink.write(b"data")
    sink.close()
    assert sink.broken
    assert "discarding further upstream output" in caplog.text
