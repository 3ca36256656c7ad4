"""
procpipe: fluent builder and execution engine for external process pipelines
"""

__version__ = "0.4.0"

from .command import Command
from .context import Context, background, with_cancel, with_deadline, with_timeout
from .errors import (
    Cancelled,
    ConfigurationError,
    ContextError,
    DeadlineExceeded,
    ExecError,
    ProcessNotStartedError,
    ProcPipeError,
    PTYUnsupportedError,
    is_cancellation,
)
from .logging_utils import ShadowEvent, ShadowPhase, get_logger
from .pipeline import PipeMode, SpawnRequest
from .process import Process
from .result import Result, first_error


def command(name: str, *args) -> Command:
    """Shorthand for :class:`Command` mirroring ``subprocess`` style call sites."""
    return Command(name, *args)


__all__ = [
    "Cancelled",
    "Command",
    "ConfigurationError",
    "Context",
    "ContextError",
    "DeadlineExceeded",
    "ExecError",
    "PTYUnsupportedError",
    "PipeMode",
    "ProcPipeError",
    "Process",
    "ProcessNotStartedError",
    "Result",
    "ShadowEvent",
    "ShadowPhase",
    "SpawnRequest",
    "background",
    "command",
    "first_error",
    "get_logger",
    "is_cancellation",
    "with_cancel",
    "with_deadline",
    "with_timeout",
    "__version__",
]
