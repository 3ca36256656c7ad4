"""Pipeline materialization, start/wait orchestration and reduction."""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence

from ..errors import ConfigurationError
from ..logging_utils import ShadowContext
from ..result import Result
from .aggregate import PipeMode, select_primary
from .pty import PTYBackend, get_backend
from .stage import DEFAULT_CHUNK_SIZE, Stage, StageDescriptor
from .writers import (
    CaptureBuffer,
    FanOut,
    PassthroughSink,
    PipeSink,
    as_sink,
    build_pty_writer,
    build_stream_writer,
)

logger = logging.getLogger(__name__)

__all__ = ["Pipeline", "validate_pty"]


def validate_pty(descriptors: Sequence[StageDescriptor], backend: PTYBackend | None = None) -> None:
    """Reject PTY capture combined with a pipeline or an unsupported platform."""

    if not descriptors or not descriptors[0].use_pty:
        return
    if len(descriptors) > 1:
        raise ConfigurationError("with_pty is not supported with pipelines")
    (backend or get_backend()).check()


class Pipeline:
    """Ordered, non-empty chain of stages wired stdout to stdin."""

    def __init__(self, stages: Sequence[Stage], with_combined: bool = False):
        if not stages:
            raise ValueError("a pipeline has at least one stage")
        self.stages: list[Stage] = list(stages)
        self.with_combined = with_combined

    @classmethod
    def materialize(
        cls,
        descriptors: Sequence[StageDescriptor],
        *,
        with_combined: bool = False,
        shadow: ShadowContext | None = None,
        pty_backend: PTYBackend | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> Pipeline:
        """Create stages, their writers and the inter-stage pipes.

        No process is spawned here.  A failure to open a PTY is recorded on
        the stage and surfaces as its start error.
        """

        backend = pty_backend or get_backend()
        stages: list[Stage] = []
        for index, desc in enumerate(descriptors):
            stage = Stage(descriptor=desc, index=index, chunk_size=chunk_size)
            combined: CaptureBuffer | None = stage.combined_buf if with_combined else None
            if desc.use_pty:
                try:
                    stage.pty_master, stage.pty_slave = backend.open()
                except (OSError, ConfigurationError) as exc:
                    stage.setup_error = exc
                    logger.debug("stage %d pty setup failed: %s", index, exc)
                    stages.append(stage)
                    continue
                stage.pty_writer = build_pty_writer(
                    desc.stdout_writer,
                    desc.stderr_writer,
                    desc.on_stdout,
                    desc.on_stderr,
                    stage.stdout_buf,
                    combined,
                    shadow,
                )
            else:
                stage.stdout_writer = build_stream_writer(
                    desc.stdout_writer, desc.on_stdout, stage.stdout_buf, combined, shadow
                )
                stage.stderr_writer = build_stream_writer(
                    desc.stderr_writer, desc.on_stderr, stage.stderr_buf, combined, shadow
                )
            stages.append(stage)

        for upstream, downstream in zip(stages, stages[1:]):
            read_fd, write_fd = os.pipe()
            upstream.pipe_sink = PipeSink(write_fd)
            downstream.stdin_fd = read_fd
            out = upstream.stdout_writer
            if isinstance(out, PassthroughSink):
                # upstream output has to pass through the copy thread to reach the pipe
                out = as_sink(out.stream)
            sinks = [out] if out is not None else []
            upstream.stdout_writer = FanOut([*sinks, upstream.pipe_sink])

        logger.debug("materialized pipeline with %d stage(s)", len(stages))
        return cls(stages, with_combined=with_combined)

    def start(self) -> None:
        """Spawn stages in order; a failure marks every later stage as failed too."""

        for index, stage in enumerate(self.stages):
            err = stage.spawn()
            if err is None:
                continue
            for later in self.stages[index + 1 :]:
                later.start_error = err
                later.release()
            logger.debug("pipeline start stopped at stage %d: %s", index, err)
            break

    def wait(self) -> None:
        """Wait for every spawned stage in order, closing each downstream pipe."""

        for stage in self.stages:
            stage.wait()

    def run(self) -> None:
        self.start()
        self.wait()

    def results(self) -> list[Result]:
        return [stage.result() for stage in self.stages]

    def primary_result(self, mode: PipeMode) -> tuple[Result, str]:
        """Return the primary result and, if requested, its combined output."""

        index, primary = select_primary(self.results(), mode)
        combined = self.stages[index].combined_buf.text() if self.with_combined else ""
        logger.debug("primary result is stage %d (mode=%s)", index, mode.value)
        return primary, combined

    def spawned(self) -> list[Stage]:
        return [stage for stage in self.stages if stage.started]

    def __len__(self) -> int:
        return len(self.stages)
