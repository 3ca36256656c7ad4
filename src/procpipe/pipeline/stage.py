"""One external process within a pipeline.

A :class:`StageDescriptor` is the immutable, fully resolved request handed
to the engine by the builder layer.  A :class:`Stage` is the runtime entity
materialized from it: it owns the OS process, the capture buffers and the
terminal state, and turns into exactly one :class:`~procpipe.result.Result`.
"""

from __future__ import annotations

import errno
import logging
import os
import signal as _signal
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..context import Context
from ..environment import env_list_to_mapping
from ..errors import ContextError, ExecError, attach_context
from ..escaping import display_command
from ..result import Result
from .sysproc import SysProcAttr, get_controls
from .writers import CaptureBuffer, LineCallback, PassthroughSink, PipeSink, Sink

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536


@dataclass(slots=True)
class SpawnRequest:
    """Mutable spawn parameters offered to ``on_exec_cmd`` hooks before spawning."""

    argv: list[str]
    env: dict[str, str]
    cwd: str | None
    popen_kwargs: dict[str, Any]


@dataclass(frozen=True, slots=True)
class StageDescriptor:
    """Resolved description of one stage, supplied by the builder layer."""

    name: str
    args: tuple[str, ...] = ()
    env: tuple[str, ...] = ()
    dir: str | None = None
    context: Context | None = None
    stdin: Any = None
    stdout_writer: Any = None
    stderr_writer: Any = None
    on_stdout: LineCallback | None = None
    on_stderr: LineCallback | None = None
    use_pty: bool = False
    sys_proc_attr: SysProcAttr | None = None
    on_exec_cmd: Callable[[SpawnRequest], None] | None = None

    @property
    def argv(self) -> list[str]:
        return [self.name, *self.args]

    def display(self) -> str:
        return display_command(self.argv)


def _real_fileno(obj: Any) -> int | None:
    if isinstance(obj, int):
        return obj
    try:
        return obj.fileno()
    except (AttributeError, OSError, ValueError):
        return None


@dataclass(slots=True, eq=False)
class Stage:
    """Runtime state of one stage; see :meth:`result` for the reporting rule."""

    descriptor: StageDescriptor
    index: int = 0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    stdout_buf: CaptureBuffer = field(default_factory=CaptureBuffer)
    stderr_buf: CaptureBuffer = field(default_factory=CaptureBuffer)
    combined_buf: CaptureBuffer = field(default_factory=CaptureBuffer)
    stdout_writer: Sink | None = None
    stderr_writer: Sink | None = None
    stdin_fd: int | None = None
    pipe_sink: PipeSink | None = None
    pty_master: int | None = None
    pty_slave: int | None = None
    pty_writer: Sink | None = None
    popen: subprocess.Popen | None = None
    setup_error: BaseException | None = None
    start_error: BaseException | None = None
    wait_error: BaseException | None = None
    context_fired: bool = False
    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None
    _copiers: list[threading.Thread] = field(default_factory=list)
    _pty_thread: threading.Thread | None = None
    _pty_error: BaseException | None = None
    _copy_error: BaseException | None = None
    _kill_callback: Callable[[ContextError], None] | None = None

    @property
    def name(self) -> str:
        return self.descriptor.display()

    @property
    def started(self) -> bool:
        return self.popen is not None

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    def spawn(self) -> BaseException | None:
        """Start the OS process; return the start error instead of raising it."""

        desc = self.descriptor
        if self.setup_error is not None:
            self.start_error = self.setup_error
            return self.start_error

        ctx = desc.context
        if ctx is not None and ctx.err() is not None:
            self.start_error = ctx.err()
            logger.debug("stage %d (%s) not spawned: %s", self.index, self.name, self.start_error)
            self.release()
            return self.start_error

        stdin_arg, stdin_feed = self._stdin_target()
        stdout_arg = self._output_target(self.stdout_writer)
        stderr_arg = self._output_target(self.stderr_writer)
        if self.pty_slave is not None:
            stdout_arg = stderr_arg = self.pty_slave

        popen_kwargs: dict[str, Any] = {"stdin": stdin_arg, "stdout": stdout_arg, "stderr": stderr_arg}
        if desc.sys_proc_attr is not None and not desc.sys_proc_attr.is_default():
            popen_kwargs.update(get_controls().popen_kwargs(desc.sys_proc_attr))
        request = SpawnRequest(
            argv=desc.argv,
            env=env_list_to_mapping(desc.env),
            cwd=desc.dir or None,
            popen_kwargs=popen_kwargs,
        )
        if desc.on_exec_cmd is not None:
            desc.on_exec_cmd(request)

        try:
            self.popen = subprocess.Popen(
                request.argv,
                env=request.env,
                cwd=request.cwd,
                **request.popen_kwargs,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            self.start_error = exc
            logger.debug("stage %d (%s) failed to start: %s", self.index, self.name, exc)
            self.release()
            return exc

        logger.debug("stage %d (%s) started pid=%s", self.index, self.name, self.popen.pid)
        self._close_stdin_fd()
        if self.pty_slave is not None:
            os.close(self.pty_slave)
            self.pty_slave = None
            self._pty_thread = self._thread(self._drain_pty, "pty")
        if self.popen.stdout is not None and self.stdout_writer is not None:
            self._copiers.append(self._thread(self._copy, "stdout", self.popen.stdout, self.stdout_writer))
        if self.popen.stderr is not None and self.stderr_writer is not None:
            self._copiers.append(self._thread(self._copy, "stderr", self.popen.stderr, self.stderr_writer))
        if stdin_feed is not None and self.popen.stdin is not None:
            self._copiers.append(self._thread(self._feed_stdin, "stdin", stdin_feed))
        if ctx is not None:
            self._kill_callback = self._kill_on_cancel
            ctx.add_done_callback(self._kill_callback)
        return None

    def _stdin_target(self) -> tuple[Any, Any]:
        if self.index > 0:
            return self.stdin_fd, None
        source = self.descriptor.stdin
        if source is None:
            return subprocess.DEVNULL, None
        if isinstance(source, (bytes, bytearray, memoryview, str)):
            return subprocess.PIPE, source
        if _real_fileno(source) is not None:
            return source, None
        return subprocess.PIPE, source

    def _output_target(self, writer: Sink | None) -> Any:
        if self.pty_slave is not None:
            return None
        if isinstance(writer, PassthroughSink) and _real_fileno(writer.stream) is not None:
            return writer.stream
        return subprocess.PIPE

    def _thread(self, target: Callable[..., None], label: str, *args: Any) -> threading.Thread:
        worker = threading.Thread(
            target=target,
            args=args,
            name=f"procpipe-{self.index}-{label}",
            daemon=True,
        )
        worker.start()
        return worker

    def _copy(self, source: Any, writer: Sink) -> None:
        try:
            while True:
                chunk = source.read1(self.chunk_size)
                if not chunk:
                    break
                try:
                    writer.write(chunk)
                except Exception as exc:
                    # Keep draining so the child never blocks on a full pipe.
                    if self._copy_error is None:
                        self._copy_error = exc
                    logger.debug("stage %d writer failed: %s", self.index, exc)
                    writer = _DISCARD
        except (OSError, ValueError) as exc:
            if self._copy_error is None:
                self._copy_error = exc
            logger.debug("stage %d copy failed: %s", self.index, exc)
        finally:
            source.close()

    def _feed_stdin(self, source: Any) -> None:
        assert self.popen is not None and self.popen.stdin is not None
        sink = self.popen.stdin
        try:
            if isinstance(source, str):
                sink.write(source.encode("utf-8"))
            elif isinstance(source, (bytes, bytearray, memoryview)):
                sink.write(source)
            else:
                while True:
                    chunk = source.read(self.chunk_size)
                    if not chunk:
                        break
                    sink.write(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
        except BrokenPipeError:
            pass
        except (OSError, ValueError) as exc:
            logger.debug("stage %d stdin copy failed: %s", self.index, exc)
        finally:
            try:
                sink.close()
            except BrokenPipeError:
                pass

    def _drain_pty(self) -> None:
        master = self.pty_master
        assert master is not None and self.pty_writer is not None
        try:
            while True:
                try:
                    chunk = os.read(master, self.chunk_size)
                except OSError as exc:
                    # Linux reports EIO once every slave descriptor is closed.
                    if exc.errno != errno.EIO:
                        self._pty_error = exc
                    break
                if not chunk:
                    break
                self.pty_writer.write(chunk)
        except Exception as exc:
            self._pty_error = exc
            logger.debug("stage %d pty drain failed: %s", self.index, exc)
        finally:
            os.close(master)
            self.pty_master = None

    def _kill_on_cancel(self, err: ContextError) -> None:
        popen = self.popen
        if popen is None or popen.poll() is not None:
            return
        self.context_fired = True
        logger.debug("stage %d (%s) killed: %s", self.index, self.name, err)
        try:
            popen.kill()
        except ProcessLookupError:
            pass

    # ------------------------------------------------------------------
    # Wait
    # ------------------------------------------------------------------

    def wait(self) -> None:
        """Block until the process exits and every copy thread has drained."""

        if self.popen is None:
            self.close_pipe()
            if self.end_time is None:
                self.end_time = time.perf_counter()
            return

        try:
            self.popen.wait()
        finally:
            for worker in self._copiers:
                worker.join()
            self.end_time = time.perf_counter()
            ctx = self.descriptor.context
            if ctx is not None and self._kill_callback is not None:
                ctx.remove_done_callback(self._kill_callback)
            if self.context_fired and ctx is not None:
                self.wait_error = ctx.err()
            elif self._copy_error is not None:
                self.wait_error = self._copy_error
            self.close_pipe()
            if self._pty_thread is not None:
                self._pty_thread.join()
                if self._pty_error is not None and self.wait_error is None:
                    self.wait_error = self._pty_error
        logger.debug(
            "stage %d (%s) exited rc=%s wait_error=%s",
            self.index,
            self.name,
            self.popen.returncode,
            self.wait_error,
        )

    def close_pipe(self) -> None:
        if self.pipe_sink is not None:
            self.pipe_sink.close()

    def _close_stdin_fd(self) -> None:
        if self.stdin_fd is not None:
            os.close(self.stdin_fd)
            self.stdin_fd = None

    def release(self) -> None:
        """Close descriptors owned by a stage that will never run."""

        self._close_stdin_fd()
        for attr in ("pty_master", "pty_slave"):
            fd = getattr(self, attr)
            if fd is not None:
                os.close(fd)
                setattr(self, attr, None)

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def result(self) -> Result:
        stdout = self.stdout_buf.text()
        stderr = self.stderr_buf.text()
        end = self.end_time if self.end_time is not None else time.perf_counter()
        duration = max(0.0, end - self.start_time)

        if self.start_error is not None:
            err = ExecError(err=self.start_error, exit_code=-1, stderr=stderr, stage=self.name)
            attach_context(err, {"stage_index": self.index, "argv": self.descriptor.argv})
            return Result(stdout=stdout, stderr=stderr, exit_code=-1, err=err, duration=duration)

        exit_code = -1
        sig: _signal.Signals | None = None
        returncode = self.popen.returncode if self.popen is not None else None
        if returncode is not None:
            if returncode < 0 and os.name == "posix":
                try:
                    sig = _signal.Signals(-returncode)
                except ValueError:
                    logger.debug("stage %d terminated by unknown signal %d", self.index, -returncode)
            else:
                exit_code = returncode

        err: BaseException | None = self.wait_error
        abnormal = err is not None or exit_code != 0
        ctx = self.descriptor.context
        if err is None and abnormal and ctx is not None and ctx.err() is not None:
            err = ctx.err()

        return Result(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            err=err,
            duration=duration,
            signal=sig,
        )


class _Discard:
    def write(self, data: bytes) -> None:
        return None


_DISCARD = _Discard()


__all__ = ["DEFAULT_CHUNK_SIZE", "SpawnRequest", "Stage", "StageDescriptor"]
