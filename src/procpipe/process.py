"""Handle over an asynchronously running pipeline."""

from __future__ import annotations

import logging
import signal as _signal
import subprocess
import threading
from collections.abc import Callable

from .config import default_config
from .errors import ProcessNotStartedError
from .logging_utils import ShadowContext
from .pipeline.aggregate import PipeMode
from .pipeline.core import Pipeline
from .result import Result

logger = logging.getLogger(__name__)

__all__ = ["Process"]


class Process:
    """A started pipeline; moves from running to done exactly once.

    The pipeline is spawned before the handle is returned, so signals can be
    delivered immediately.  Waiting and reduction run on a background thread.
    """

    def __init__(
        self,
        pipeline: Pipeline | None = None,
        mode: PipeMode = PipeMode.STRICT,
        shadow: ShadowContext | None = None,
    ):
        self.pipeline = pipeline
        self.mode = mode
        self._shadow = shadow
        self._done = threading.Event()
        self._result: Result | None = None
        self._finish_lock = threading.Lock()
        self._finished = False
        self._timer_lock = threading.Lock()
        self._kill_timer: threading.Timer | None = None
        self._waiter: threading.Thread | None = None

    @classmethod
    def launch(
        cls,
        pipeline: Pipeline,
        mode: PipeMode,
        shadow: ShadowContext | None = None,
    ) -> Process:
        """Start ``pipeline`` now and reduce its results in the background."""

        pipeline.start()
        proc = cls(pipeline, mode, shadow)
        proc._waiter = threading.Thread(target=proc._wait_and_reduce, name="procpipe-wait", daemon=True)
        proc._waiter.start()
        return proc

    @classmethod
    def completed(cls, result: Result) -> Process:
        """Return a handle that is already done with ``result``."""

        proc = cls()
        proc._finish(result)
        return proc

    def _wait_and_reduce(self) -> None:
        assert self.pipeline is not None
        try:
            self.pipeline.wait()
            result, _ = self.pipeline.primary_result(self.mode)
        except Exception as exc:
            logger.error("background wait failed: %s", exc)
            result = Result(exit_code=-1, err=exc)
        self._finish(result)

    def _finish(self, result: Result) -> None:
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True
            self._result = result
        with self._timer_lock:
            timer, self._kill_timer = self._kill_timer, None
        if timer is not None:
            timer.cancel()
        if self._shadow is not None:
            self._shadow.finish()
        self._done.set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def wait(self, timeout: float | None = None) -> Result:
        """Block until the pipeline finishes and return the primary result.

        Every call returns the same :class:`Result`.  Raises
        :class:`TimeoutError` if ``timeout`` elapses first.
        """

        if not self._done.wait(timeout):
            raise TimeoutError(f"process still running after {timeout}s")
        assert self._result is not None
        return self._result

    def done(self) -> bool:
        return self._done.is_set()

    @property
    def result(self) -> Result | None:
        return self._result

    @property
    def pids(self) -> list[int]:
        if self.pipeline is None:
            return []
        return [stage.popen.pid for stage in self.pipeline.spawned() if stage.popen is not None]

    def send(self, sig: int) -> None:
        """Deliver ``sig`` to every spawned stage.

        Raises the first delivery error after trying every stage, or
        :class:`ProcessNotStartedError` when no stage was ever spawned.
        Stages that already exited are skipped silently.
        """

        self._signal_all(lambda popen: popen.send_signal(sig))

    def interrupt(self) -> None:
        self.send(_signal.SIGINT)

    def terminate(self) -> None:
        """Kill every stage unconditionally."""

        self._signal_all(lambda popen: popen.kill())

    def graceful_shutdown(self, sig: int, timeout: float | None = None) -> None:
        """Send ``sig``, then kill if the pipeline is still running after ``timeout``.

        ``timeout`` defaults to the configured ``graceful_timeout``.  Returns
        once the pipeline has fully terminated.  A failure to deliver the
        initial signal is raised without escalating.
        """

        if timeout is None:
            timeout = default_config().graceful_timeout
        if timeout <= 0:
            self.terminate()
            return
        self.send(sig)
        if self._done.wait(timeout):
            return
        logger.debug("graceful shutdown timed out after %.3fs, killing", timeout)
        self._terminate_quietly()
        self._done.wait()

    def kill_after(self, seconds: float) -> None:
        """Schedule :meth:`terminate` after ``seconds``; re-arming replaces the timer."""

        timer = threading.Timer(seconds, self._terminate_quietly)
        timer.daemon = True
        with self._timer_lock:
            previous, self._kill_timer = self._kill_timer, timer
            if previous is not None:
                previous.cancel()
            if self._done.is_set():
                self._kill_timer = None
                return
            timer.start()
        logger.debug("kill timer armed for %.3fs", seconds)

    def _terminate_quietly(self) -> None:
        try:
            self.terminate()
        except (OSError, ProcessNotStartedError) as exc:
            logger.debug("terminate failed: %s", exc)

    def _signal_all(self, send: Callable[[subprocess.Popen], None]) -> None:
        if self.pipeline is None:
            raise ProcessNotStartedError("process not started")
        first_err: BaseException | None = None
        count = 0
        for stage in self.pipeline.stages:
            popen = stage.popen
            if popen is None:
                continue
            count += 1
            try:
                send(popen)
            except ProcessLookupError:
                continue
            except (OSError, ValueError) as exc:
                if first_err is None:
                    first_err = exc
        if count == 0:
            raise ProcessNotStartedError("process not started")
        if first_err is not None:
            raise first_err

    def __repr__(self) -> str:
        state = "done" if self._done.is_set() else "running"
        return f"Process(pids={self.pids}, state={state})"
