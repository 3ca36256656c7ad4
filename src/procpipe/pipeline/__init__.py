"""Pipeline execution engine: stages, wiring, orchestration and reduction."""

from .aggregate import PipeMode, select_primary
from .core import Pipeline, validate_pty
from .stage import SpawnRequest, Stage, StageDescriptor

__all__ = [
    "PipeMode",
    "Pipeline",
    "SpawnRequest",
    "Stage",
    "StageDescriptor",
    "select_primary",
    "validate_pty",
]
