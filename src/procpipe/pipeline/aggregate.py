"""Reduce per-stage results to the one result reported for a pipeline."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from enum import Enum

from ..result import Result, first_error

__all__ = ["PipeMode", "select_primary"]


class PipeMode(str, Enum):
    """Failure-propagation policy of a whole pipeline.

    ``STRICT`` reports the first failing stage (shell ``pipefail``);
    ``BEST_EFFORT`` reports the last stage and surfaces the first error found
    anywhere in the chain on it.
    """

    STRICT = "strict"
    BEST_EFFORT = "best_effort"


def select_primary(results: Sequence[Result], mode: PipeMode) -> tuple[int, Result]:
    """Return ``(index, result)`` of the primary result under ``mode``."""

    if not results:
        raise ValueError("a pipeline has at least one stage")

    index = len(results) - 1
    if mode is PipeMode.STRICT:
        for i, res in enumerate(results):
            if res.exit_code != 0 or res.err is not None:
                index = i
                break

    primary = results[index]
    if mode is PipeMode.BEST_EFFORT and primary.err is None:
        err = first_error(results)
        if err is not None:
            primary = replace(primary, err=err)
    return index, primary
