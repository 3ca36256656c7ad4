"""Output sinks that a stage's copy threads write child output into.

Every sink exposes ``write(data: bytes)``.  A stage's effective stdout or
stderr writer is a :class:`FanOut` over the caller's raw writer, the stage's
own capture buffer, the shared combined buffer and a line-callback adapter,
in that order.
"""

from __future__ import annotations

import codecs
import io
import logging
import os
import threading
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from ..logging_utils import ShadowContext

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]


class Sink(Protocol):
    def write(self, data: bytes) -> Any: ...


class CaptureBuffer:
    """Growable byte buffer shared safely between copy threads."""

    def __init__(self) -> None:
        self._data = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._data.extend(data)
        return len(data)

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def text(self) -> str:
        return self.getvalue().decode("utf-8", errors="replace")

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class StreamSink:
    """Forward bytes to a caller supplied binary stream."""

    def __init__(self, stream: Any):
        self.stream = stream

    def write(self, data: bytes) -> None:
        self.stream.write(data)
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            flush()


class TextSink(StreamSink):
    """Forward bytes to a text stream, decoding UTF-8 across chunk boundaries."""

    def __init__(self, stream: Any):
        super().__init__(stream)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def write(self, data: bytes) -> None:
        text = self._decoder.decode(data)
        if text:
            super().write(text)


class PassthroughSink(StreamSink):
    """A real terminal handed to the child directly when nothing else listens."""


class LineWriter:
    """Accumulate bytes and deliver each ``\\n`` terminated line to a callback.

    The trailing ``\\r`` of a line is stripped.  A final partial line without
    a newline is never delivered.
    """

    def __init__(self, *callbacks: LineCallback | None):
        self._callbacks = [cb for cb in callbacks if cb is not None]
        self._pending = bytearray()

    def write(self, data: bytes) -> int:
        if not self._callbacks:
            return len(data)
        start = 0
        while True:
            idx = data.find(b"\n", start)
            if idx < 0:
                self._pending.extend(data[start:])
                break
            self._pending.extend(data[start:idx])
            line = bytes(self._pending)
            self._pending.clear()
            if line.endswith(b"\r"):
                line = line[:-1]
            text = line.decode("utf-8", errors="replace")
            for callback in self._callbacks:
                callback(text)
            start = idx + 1
        return len(data)


class PipeSink:
    """Write end of the in-memory pipe feeding the next stage's stdin.

    Once the reader has gone away the sink discards further data so upstream
    capture keeps working.  The upstream process is not stopped and its
    captured output keeps growing.
    """

    def __init__(self, fd: int):
        self._fd: int | None = fd
        self._lock = threading.Lock()
        self.broken = False

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            with self._lock:
                fd = self._fd
            if fd is None or self.broken:
                return
            try:
                written = os.write(fd, view)
            except OSError as exc:
                if isinstance(exc, BrokenPipeError):
                    logger.debug("downstream closed fd %s; discarding further upstream output", fd)
                else:
                    logger.debug("pipe write failed on fd %s: %s", fd, exc)
                self.broken = True
                return
            view = view[written:]

    def close(self) -> None:
        with self._lock:
            fd, self._fd = self._fd, None
        if fd is not None:
            os.close(fd)

    @property
    def closed(self) -> bool:
        return self._fd is None


class ShadowWriter:
    def __init__(self, inner: Sink, shadow: ShadowContext):
        self.inner = inner
        self.shadow = shadow

    def write(self, data: bytes) -> None:
        self.shadow.observe(data)
        self.inner.write(data)


class FanOut:
    """Write every chunk to each sink in order."""

    def __init__(self, sinks: Sequence[Sink]):
        self.sinks = list(sinks)

    def write(self, data: bytes) -> None:
        for sink in self.sinks:
            sink.write(data)


def is_terminal_writer(stream: Any) -> bool:
    """Report whether ``stream`` is a real file attached to a terminal."""

    if stream is None:
        return False
    try:
        return os.isatty(stream.fileno())
    except (AttributeError, OSError, ValueError, io.UnsupportedOperation):
        return False


def as_sink(stream: Any) -> Sink:
    if isinstance(stream, io.TextIOBase):
        return TextSink(stream)
    return StreamSink(stream)


def _wrap_shadow(out: Sink, shadow: ShadowContext | None) -> Sink:
    if shadow is not None and shadow.spacing:
        return ShadowWriter(out, shadow)
    return out


def build_stream_writer(
    raw: Any,
    on_line: LineCallback | None,
    buffer: CaptureBuffer,
    combined: CaptureBuffer | None,
    shadow: ShadowContext | None = None,
) -> Sink:
    """Compose the effective writer for one of a stage's output streams.

    When ``raw`` is a terminal and neither a line callback nor combined
    capture is requested, output goes straight to the terminal and the
    capture buffer stays empty.
    """

    if raw is not None and on_line is None and combined is None and is_terminal_writer(raw):
        return PassthroughSink(raw)

    sinks: list[Sink] = []
    if raw is not None:
        sinks.append(as_sink(raw))
    sinks.append(buffer)
    if combined is not None:
        sinks.append(combined)
    if on_line is not None:
        sinks.append(LineWriter(on_line))
    out: Sink = sinks[0] if len(sinks) == 1 else FanOut(sinks)
    return _wrap_shadow(out, shadow)


def build_pty_writer(
    stdout_raw: Any,
    stderr_raw: Any,
    on_stdout: LineCallback | None,
    on_stderr: LineCallback | None,
    buffer: CaptureBuffer,
    combined: CaptureBuffer | None,
    shadow: ShadowContext | None = None,
) -> Sink:
    """Writer draining a PTY master; stdout and stderr arrive merged.

    Both line callbacks, when set, receive every line.
    """

    sinks: list[Sink] = []
    if stdout_raw is not None:
        sinks.append(as_sink(stdout_raw))
    if stderr_raw is not None and stderr_raw is not stdout_raw:
        sinks.append(as_sink(stderr_raw))
    sinks.append(buffer)
    if combined is not None:
        sinks.append(combined)
    if on_stdout is not None or on_stderr is not None:
        sinks.append(LineWriter(on_stdout, on_stderr))
    out: Sink = sinks[0] if len(sinks) == 1 else FanOut(sinks)
    return _wrap_shadow(out, shadow)


__all__ = [
    "CaptureBuffer",
    "FanOut",
    "LineCallback",
    "LineWriter",
    "PassthroughSink",
    "PipeSink",
    "ShadowWriter",
    "Sink",
    "StreamSink",
    "TextSink",
    "as_sink",
    "build_pty_writer",
    "build_stream_writer",
    "is_terminal_writer",
]
