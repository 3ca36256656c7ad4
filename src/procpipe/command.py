"""Fluent command builder and synchronous/asynchronous execution entry points.

A :class:`Command` is one stage descriptor.  :meth:`Command.pipe` appends a
stage to the chain and returns it; execution methods can be called on any
stage and always run the whole chain from its root.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import datetime
from typing import Any

from .config import ExecConfig, default_config
from .context import Context, background, with_deadline, with_timeout
from .environment import EnvMode, build_env, merge_env_values
from .errors import ProcPipeError
from .escaping import display_command, shell_escape_argv, shell_escape_pipeline
from .logging_utils import ShadowConfig, ShadowContext, ShadowEvent
from .pipeline.aggregate import PipeMode
from .pipeline.core import Pipeline, validate_pty
from .pipeline.stage import SpawnRequest, StageDescriptor
from .pipeline.sysproc import SysProcAttr
from .process import Process
from .result import Result

logger = logging.getLogger(__name__)

__all__ = ["Command"]


class Command:
    """One invocation of an external program, possibly part of a pipeline."""

    def __init__(self, name: str, *args: Any, config: ExecConfig | None = None):
        self.name = name
        self._args: list[str] = []
        self._env: dict[str, str] | None = None
        self._env_mode = EnvMode.INHERIT
        self._context: Context | None = None
        self._owns_context = False
        self._dir: str | None = None
        self._stdin: Any = None
        self._on_stdout: Callable[[str], None] | None = None
        self._on_stderr: Callable[[str], None] | None = None
        self._stdout_writer: Any = None
        self._stderr_writer: Any = None
        self._sys_proc_attr: SysProcAttr | None = None
        self._on_exec_cmd: Callable[[SpawnRequest], None] | None = None
        self._use_pty = False
        self._next: Command | None = None
        self._root: Command = self
        self._pipe_mode = PipeMode.STRICT
        self._config = config or default_config()
        self._shadow_print = self._config.shadow_print
        self._shadow_config = ShadowConfig(prefix=self._config.shadow_prefix)
        self.arg(*args)

    # ------------------------------------------------------------------
    # Arguments and environment
    # ------------------------------------------------------------------

    def arg(self, *values: Any) -> Command:
        """Append arguments.

        Strings are appended as-is, lists and tuples are flattened, mappings
        contribute ``key, value`` pairs sorted by key, and anything else is
        converted with ``str``.
        """

        for value in values:
            if isinstance(value, str):
                self._args.append(value)
            elif isinstance(value, (list, tuple)):
                self._args.extend(str(item) for item in value)
            elif isinstance(value, Mapping):
                for key in sorted(value):
                    self._args.extend((str(key), str(value[key])))
            else:
                self._args.append(str(value))
        return self

    def env(self, *values: Any) -> Command:
        if self._env is None:
            self._env = {}
        merge_env_values(self._env, values)
        return self

    def env_inherit(self) -> Command:
        self._env_mode = EnvMode.INHERIT
        return self

    def env_only(self, values: Mapping[str, str]) -> Command:
        self._env_mode = EnvMode.ONLY
        self._env = {str(key): str(val) for key, val in values.items()}
        return self

    def env_append(self, values: Mapping[str, str]) -> Command:
        self._env_mode = EnvMode.APPEND
        if self._env is None:
            self._env = {}
        merge_env_values(self._env, [values])
        return self

    def dir(self, path: str | Any) -> Command:
        self._dir = str(path) if path else None
        return self

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def with_context(self, ctx: Context | None) -> Command:
        self._release_context()
        self._context = ctx
        return self

    def with_timeout(self, seconds: float) -> Command:
        parent = self._derive_parent()
        self._context = with_timeout(seconds, parent)
        self._owns_context = True
        return self

    def with_deadline(self, when: float | datetime) -> Command:
        parent = self._derive_parent()
        self._context = with_deadline(when, parent)
        self._owns_context = True
        return self

    def _derive_parent(self) -> Context:
        parent = self._context
        if self._owns_context:
            self._release_context()
            parent = None
        if parent is None or parent.err() is not None:
            parent = background()
        return parent

    def _release_context(self) -> None:
        if self._owns_context and self._context is not None:
            self._context.cancel()
        self._owns_context = False

    # ------------------------------------------------------------------
    # Input and output
    # ------------------------------------------------------------------

    def stdin_string(self, text: str) -> Command:
        self._stdin = text
        return self

    def stdin_bytes(self, data: bytes) -> Command:
        self._stdin = bytes(data)
        return self

    def stdin_reader(self, reader: Any) -> Command:
        self._stdin = reader
        return self

    def stdin_file(self, file: Any) -> Command:
        self._stdin = file
        return self

    def on_stdout(self, fn: Callable[[str], None]) -> Command:
        """Call ``fn`` for every stdout line (without its line ending)."""
        self._on_stdout = fn
        return self

    def on_stderr(self, fn: Callable[[str], None]) -> Command:
        self._on_stderr = fn
        return self

    def stdout_writer(self, stream: Any) -> Command:
        """Also send raw stdout to ``stream``.

        A terminal stream with no callback receives output directly and the
        result's captured stdout stays empty.
        """
        self._stdout_writer = stream
        return self

    def stderr_writer(self, stream: Any) -> Command:
        self._stderr_writer = stream
        return self

    def with_pty(self) -> Command:
        """Attach the root stage's stdout and stderr to a pseudo-terminal.

        Both streams are captured merged as stdout; captured stderr stays
        empty.  Cannot be combined with :meth:`pipe`.
        """
        self._root._use_pty = True
        return self

    def on_exec_cmd(self, fn: Callable[[SpawnRequest], None]) -> Command:
        self._on_exec_cmd = fn
        return self

    # ------------------------------------------------------------------
    # OS controls (no-ops where unsupported)
    # ------------------------------------------------------------------

    def _attr(self) -> SysProcAttr:
        if self._sys_proc_attr is None:
            self._sys_proc_attr = SysProcAttr()
        return self._sys_proc_attr

    def setpgid(self, on: bool = True) -> Command:
        self._attr().setpgid = on
        return self

    def setsid(self, on: bool = True) -> Command:
        self._attr().setsid = on
        return self

    def pdeathsig(self, sig: int) -> Command:
        self._attr().pdeathsig = int(sig) if sig else None
        return self

    def creation_flags(self, flags: int) -> Command:
        self._attr().creation_flags = int(flags)
        return self

    def hide_window(self, on: bool = True) -> Command:
        self._attr().hide_window = on
        return self

    # ------------------------------------------------------------------
    # Pipelining
    # ------------------------------------------------------------------

    def pipe(self, name: str, *args: Any) -> Command:
        """Append a stage reading this chain's stdout and return it.

        If a later stage exits before reading all of its input (``head -n1``),
        earlier stages are not stopped: they run to completion and their
        output is still captured in memory.  Bind a context with
        :meth:`with_timeout` or :meth:`with_context` to bound an endless
        producer.
        """

        root = self._root
        nxt = Command(name, *args, config=root._config)
        nxt._root = root
        nxt._pipe_mode = root._pipe_mode
        last = root
        while last._next is not None:
            last = last._next
        last._next = nxt
        return nxt

    def pipe_strict(self) -> Command:
        self._root._pipe_mode = PipeMode.STRICT
        return self

    def pipe_best_effort(self) -> Command:
        self._root._pipe_mode = PipeMode.BEST_EFFORT
        return self

    @property
    def pipe_mode(self) -> PipeMode:
        return self._root._pipe_mode

    def stages(self) -> Iterator[Command]:
        current: Command | None = self._root
        while current is not None:
            yield current
            current = current._next

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def args(self) -> list[str]:
        return [self.name, *self._args]

    def env_list(self) -> list[str]:
        return build_env(self._env_mode, self._env)

    def __str__(self) -> str:
        return display_command(self.args())

    def __repr__(self) -> str:
        return f"Command({' | '.join(str(stage) for stage in self.stages())!r})"

    def shell_escaped(self) -> str:
        return shell_escape_argv(self.args())

    # ------------------------------------------------------------------
    # Shadow print
    # ------------------------------------------------------------------

    def shadow_print(
        self,
        *,
        prefix: str | None = None,
        mask: Callable[[str], str] | None = None,
        formatter: Callable[[ShadowEvent], str] | None = None,
    ) -> Command:
        """Echo the pipeline to stderr before and after it runs."""

        root = self._root
        root._shadow_config = ShadowConfig(
            prefix=prefix or root._config.shadow_prefix,
            mask=mask,
            formatter=formatter,
        )
        root._shadow_print = True
        return self

    def shadow_on(self) -> Command:
        self._root._shadow_print = True
        return self

    def shadow_off(self) -> Command:
        self._root._shadow_print = False
        return self

    def _shadow_start(self, is_async: bool) -> ShadowContext | None:
        root = self._root
        if not root._shadow_print:
            return None
        command = shell_escape_pipeline(stage.args() for stage in self.stages())
        return ShadowContext(command=command, config=root._shadow_config, is_async=is_async).begin()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _descriptor(self) -> StageDescriptor:
        return StageDescriptor(
            name=self.name,
            args=tuple(self._args),
            env=tuple(self.env_list()),
            dir=self._dir,
            context=self._context,
            stdin=self._stdin,
            stdout_writer=self._stdout_writer,
            stderr_writer=self._stderr_writer,
            on_stdout=self._on_stdout,
            on_stderr=self._on_stderr,
            use_pty=self._use_pty,
            sys_proc_attr=self._sys_proc_attr,
            on_exec_cmd=self._on_exec_cmd,
        )

    def descriptors(self) -> list[StageDescriptor]:
        return [stage._descriptor() for stage in self.stages()]

    def _execute(self, with_combined: bool) -> Pipeline:
        descriptors = self.descriptors()
        validate_pty(descriptors)
        shadow = self._shadow_start(is_async=False)
        pipeline = Pipeline.materialize(
            descriptors,
            with_combined=with_combined,
            shadow=shadow,
            chunk_size=self._root._config.read_chunk_size,
        )
        try:
            pipeline.run()
        finally:
            if shadow is not None:
                shadow.finish()
        return pipeline

    def run(self) -> Result:
        """Run the chain and return its primary result.

        Execution failures are reported on ``Result.err``; nothing is raised
        for them.
        """

        try:
            pipeline = self._execute(with_combined=False)
        except ProcPipeError as exc:
            return Result(exit_code=-1, err=exc)
        result, _ = pipeline.primary_result(self.pipe_mode)
        return result

    def output(self) -> str:
        """Return the primary stdout, raising the primary result's error if set."""

        result = self.run()
        if result.err is not None:
            raise result.err
        return result.stdout

    def output_bytes(self) -> bytes:
        return self.output().encode("utf-8")

    def output_trimmed(self) -> str:
        return self.output().strip()

    def combined_output(self) -> str:
        """Return the primary stage's interleaved stdout and stderr."""

        result, combined = self.run_combined()
        if result.err is not None:
            raise result.err
        return combined

    def run_combined(self) -> tuple[Result, str]:
        """Run the chain capturing the primary stage's stdout and stderr interleaved."""

        pipeline = self._execute(with_combined=True)
        return pipeline.primary_result(self.pipe_mode)

    def pipeline_results(self) -> list[Result]:
        """Run the chain and return one result per stage, in order."""

        pipeline = self._execute(with_combined=False)
        return pipeline.results()

    def start(self) -> Process:
        """Spawn the chain and return a handle without waiting for it."""

        descriptors = self.descriptors()
        try:
            validate_pty(descriptors)
        except ProcPipeError as exc:
            return Process.completed(Result(exit_code=-1, err=exc))
        shadow = self._shadow_start(is_async=True)
        pipeline = Pipeline.materialize(
            descriptors,
            shadow=shadow,
            chunk_size=self._root._config.read_chunk_size,
        )
        return Process.launch(pipeline, self.pipe_mode, shadow)
