"""Configuration defaults and environment overrides for procpipe."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from functools import lru_cache
from typing import Any

from .errors import ConfigurationError

__all__ = ["ExecConfig", "default_config", "ENV_PREFIX"]

ENV_PREFIX = "PROCPIPE_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


def _ensure_numeric_range(
    name: str,
    value: float,
    *,
    ge: float | None = None,
    gt: float | None = None,
) -> None:
    """Validate numeric range constraints for configuration fields."""

    if ge is not None and value < ge:
        raise ConfigurationError(f"{name} must be >= {ge}")
    if gt is not None and value <= gt:
        raise ConfigurationError(f"{name} must be > {gt}")


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


@dataclass(slots=True, frozen=True)
class ExecConfig:
    """Validated defaults applied to every command built in this process."""

    shadow_print: bool = False
    shadow_prefix: str = "procpipe"
    log_level: str = "WARNING"
    graceful_timeout: float = 5.0
    read_chunk_size: int = 65536

    def __post_init__(self) -> None:
        if not self.shadow_prefix:
            raise ConfigurationError("shadow_prefix must not be empty")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        _ensure_numeric_range("graceful_timeout", self.graceful_timeout, ge=0.0)
        _ensure_numeric_range("read_chunk_size", self.read_chunk_size, gt=0)

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ExecConfig:
        """Build a config from ``PROCPIPE_*`` variables layered over defaults."""

        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for spec in fields(cls):
            raw = env.get(f"{ENV_PREFIX}{spec.name.upper()}")
            if raw is None:
                continue
            overrides[spec.name] = raw
        # PROCPIPE_SHADOW is the documented short spelling.
        if "shadow_print" not in overrides and f"{ENV_PREFIX}SHADOW" in env:
            overrides["shadow_print"] = env[f"{ENV_PREFIX}SHADOW"]
        return cls().with_overrides(overrides)

    def with_overrides(self, overrides: Mapping[str, Any]) -> ExecConfig:
        known = {spec.name for spec in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"unknown config keys: {', '.join(unknown)}")

        coerced: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            try:
                if key == "shadow_print":
                    coerced[key] = _coerce_bool(key, value)
                elif key == "graceful_timeout":
                    coerced[key] = float(value)
                elif key == "read_chunk_size":
                    coerced[key] = int(value)
                else:
                    coerced[key] = str(value)
            except ValueError as exc:
                raise ConfigurationError(f"invalid value for {key}: {value!r}", cause=exc) from exc
        return replace(self, **coerced)

    def to_dict(self) -> dict[str, Any]:
        return {spec.name: getattr(self, spec.name) for spec in fields(self)}


@lru_cache(maxsize=1)
def default_config() -> ExecConfig:
    """Return the process-wide config derived from the environment (cached)."""
    return ExecConfig.from_env()
