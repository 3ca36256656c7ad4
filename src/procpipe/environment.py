"""Environment list construction for spawned stages."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

__all__ = ["EnvMode", "build_env", "env_list_to_mapping", "merge_env_values"]


class EnvMode(str, Enum):
    INHERIT = "inherit"
    ONLY = "only"
    APPEND = "append"


def _split_entry(entry: str) -> tuple[str, str]:
    key, _, value = entry.partition("=")
    return key, value


def merge_env_values(target: dict[str, str], values: Iterable[Any]) -> dict[str, str]:
    """Fold ``KEY=VALUE`` strings, iterables of them, or mappings into ``target``."""

    for value in values:
        if isinstance(value, str):
            key, val = _split_entry(value)
            target[key] = val
        elif isinstance(value, Mapping):
            for key, val in value.items():
                target[str(key)] = str(val)
        elif isinstance(value, Iterable):
            for entry in value:
                key, val = _split_entry(str(entry))
                target[key] = val
        else:
            key, val = _split_entry(str(value))
            target[key] = val
    return target


def build_env(
    mode: EnvMode,
    overrides: Mapping[str, str] | None,
    base: Mapping[str, str] | None = None,
) -> list[str]:
    """Return ``KEY=VALUE`` entries sorted by key.

    ``INHERIT`` and ``APPEND`` start from ``base`` (the current process
    environment by default); ``ONLY`` uses ``overrides`` alone.
    """

    merged: dict[str, str] = {}
    if mode is not EnvMode.ONLY:
        merged.update(os.environ if base is None else base)
    if overrides:
        merged.update(overrides)
    return [f"{key}={merged[key]}" for key in sorted(merged)]


def env_list_to_mapping(entries: Iterable[str]) -> dict[str, str]:
    return dict(_split_entry(entry) for entry in entries)
