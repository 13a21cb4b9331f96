"""Load engine configuration from an optional YAML file and the environment."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_BUSY_TIMEOUT,
    DEFAULT_CACHE_SIZE,
    DEFAULT_MAX_PATH_DEPTH,
    DEFAULT_MAX_PATH_LENGTH,
    DEFAULT_MAX_SEGMENT_LENGTH,
    DEFAULT_STORAGE_BACKEND,
    DEFAULT_STORAGE_DIR,
    DEFAULT_STORAGE_NAME,
    STORAGE_BACKENDS,
)
from .io_utils import _load_data_with_error


@dataclass(frozen=True)
class PathLimits:
    """Bounds enforced by path normalization."""

    max_depth: int = DEFAULT_MAX_PATH_DEPTH
    max_segment_length: int = DEFAULT_MAX_SEGMENT_LENGTH
    max_length: int = DEFAULT_MAX_PATH_LENGTH


@dataclass
class EngineConfig:
    storage_backend: str = DEFAULT_STORAGE_BACKEND
    storage_dir: str = DEFAULT_STORAGE_DIR
    storage_name: str = DEFAULT_STORAGE_NAME
    cache_size: int = DEFAULT_CACHE_SIZE
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    max_path_depth: int = DEFAULT_MAX_PATH_DEPTH
    max_segment_length: int = DEFAULT_MAX_SEGMENT_LENGTH
    max_path_length: int = DEFAULT_MAX_PATH_LENGTH
    log_level: str = "INFO"

    @property
    def path_limits(self) -> PathLimits:
        return PathLimits(
            max_depth=self.max_path_depth,
            max_segment_length=self.max_segment_length,
            max_length=self.max_path_length,
        )

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_dir).expanduser().resolve()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Environment variable -> config field.
ENV_OVERRIDES = {
    "ATLAS_STORAGE_BACKEND": "storage_backend",
    "ATLAS_STORAGE_DIR": "storage_dir",
    "ATLAS_STORAGE_NAME": "storage_name",
    "ATLAS_CACHE_SIZE": "cache_size",
    "ATLAS_BUSY_TIMEOUT": "busy_timeout",
    "ATLAS_MAX_PATH_DEPTH": "max_path_depth",
    "ATLAS_LOG_LEVEL": "log_level",
}

_FIELD_TYPES = {f.name: f.type for f in fields(EngineConfig)}


def _coerce(name: str, raw: Any) -> Any:
    kind = _FIELD_TYPES[name]
    if kind == "int":
        value = int(raw)
        if value < 1:
            raise ValueError(f"{name} must be >= 1")
        return value
    if kind == "float":
        value = float(raw)
        if value < 0:
            raise ValueError(f"{name} must be >= 0")
        return value
    return str(raw)


def _apply(values: dict[str, Any], source: Mapping[str, Any], label: str, errors: list[str]) -> None:
    for name, raw in source.items():
        if name not in _FIELD_TYPES:
            errors.append(f"{label}: unknown setting '{name}'")
            continue
        if raw is None:
            continue
        try:
            values[name] = _coerce(name, raw)
        except (TypeError, ValueError) as exc:
            errors.append(f"{label}: invalid value for '{name}': {exc}")


def load_engine_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> tuple[EngineConfig, str | None]:
    """Build the engine configuration.

    Args:
        config_path: Optional YAML/JSON file. Defaults to ``config.yaml``
            inside the storage directory when that file exists.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        A tuple of ``(config, error_message)``. Invalid values are reported in
        the error message and the default is kept for them.
    """
    env = os.environ if env is None else env
    errors: list[str] = []
    values: dict[str, Any] = {}

    env_values = {field_name: env[key] for key, field_name in ENV_OVERRIDES.items() if key in env}

    if config_path is None:
        storage_dir = env_values.get("storage_dir", DEFAULT_STORAGE_DIR)
        config_path = Path(storage_dir).expanduser() / CONFIG_FILE
    data, err = _load_data_with_error(config_path, {})
    if err:
        errors.append(err)
    _apply(values, data, config_path.name, errors)
    _apply(values, env_values, "environment", errors)

    if "max_path_depth" in values or "max_segment_length" in values:
        values.setdefault(
            "max_path_length",
            values.get("max_path_depth", DEFAULT_MAX_PATH_DEPTH)
            * values.get("max_segment_length", DEFAULT_MAX_SEGMENT_LENGTH),
        )

    backend = values.get("storage_backend")
    if backend is not None and backend not in STORAGE_BACKENDS:
        errors.append(f"storage_backend must be one of {list(STORAGE_BACKENDS)}, got '{backend}'")
        values.pop("storage_backend")

    config = EngineConfig(**values)
    return config, ("; ".join(errors) if errors else None)
