from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Final, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .geometric_error import DEFAULT_HEIGHTMAP_TERRAIN_QUALITY, WGS84_A

SUPPORTED_SCHEMA_VERSIONS: Final[set[int]] = {1}

DEFAULT_MESH_TILER_CONFIG_NAME: Final[str] = "mesh-tiler.yaml"
DEFAULT_MESH_TILER_CONFIG_ENV: Final[str] = "TERRAIN_MESH_CONFIG"
DEFAULT_CONFIG_DIR_ENV: Final[str] = "TERRAIN_MESH_CONFIG_DIR"


class BackoffConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_seconds: float = Field(default=1.0, gt=0)
    factor: float = Field(default=2.0, gt=1.0)
    max_seconds: float = Field(default=60.0, gt=0)


class SchedulerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_workers: int = Field(default=4, ge=1, le=128)

    # Retry policy; raster read failures are not retried unless asked for.
    max_retries: int = Field(default=0, ge=0, le=50)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)

    # Log progress at most every N completed tiles (1 = every tile).
    progress_log_every: int = Field(default=1, ge=1, le=10_000)


class MeshTilerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1

    tile_size: int = Field(default=65, ge=3)
    min_zoom: int = Field(default=0, ge=0)
    max_zoom: int = Field(default=12, ge=0, le=30)

    # Geometric error model.
    mesh_quality_factor: float = Field(default=1.0, gt=0)
    heightmap_terrain_quality: float = Field(
        default=DEFAULT_HEIGHTMAP_TERRAIN_QUALITY, gt=0
    )
    semi_major_axis_m: float = Field(default=WGS84_A, gt=0)

    # Border resolution runs above this zoom; low zooms are densified instead.
    border_propagation_min_zoom: int = Field(default=6, ge=0)

    heights_cache_entries: int = Field(default=32, ge=0)

    fill_value: float = 0.0
    sampling: Literal["nearest", "bilinear"] = "bilinear"

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @model_validator(mode="after")
    def _validate_mesh_tiler(self) -> "MeshTilerConfig":
        if self.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(
                f"Unsupported mesh tiler schema_version={self.schema_version}; "
                f"supported versions: {sorted(SUPPORTED_SCHEMA_VERSIONS)}"
            )
        cells = self.tile_size - 1
        if cells & (cells - 1) != 0:
            raise ValueError(f"tile_size must be 2^n + 1, got {self.tile_size}")
        if self.max_zoom < self.min_zoom:
            raise ValueError("max_zoom must be >= min_zoom")
        return self


def _resolve_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = environ or os.environ
    explicit = environ.get(DEFAULT_CONFIG_DIR_ENV)
    if explicit:
        explicit_path = Path(explicit).expanduser()
        if not explicit_path.is_absolute():
            explicit_path = (Path.cwd() / explicit_path).resolve()
        return explicit_path
    return Path.cwd() / "config"


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = (Path.cwd() / candidate).resolve()
        return candidate

    explicit = os.environ.get(DEFAULT_MESH_TILER_CONFIG_ENV)
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_absolute():
            candidate = (Path.cwd() / candidate).resolve()
        return candidate

    return _resolve_config_dir(os.environ) / DEFAULT_MESH_TILER_CONFIG_NAME


def _parse_yaml(text: str, *, source: Path) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(text)
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to load mesh tiler YAML: {source}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"mesh tiler config must be a mapping: {source}")
    return data


def load_mesh_tiler_config(path: Optional[Union[str, Path]] = None) -> MeshTilerConfig:
    config_path = _resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"mesh tiler config file not found: {config_path}")

    raw_text = config_path.read_text(encoding="utf-8")
    data = dict(_parse_yaml(raw_text, source=config_path))

    try:
        return MeshTilerConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid mesh tiler config ({config_path}): {exc}") from exc


@lru_cache(maxsize=8)
def _get_mesh_tiler_config_cached(
    config_path: str, mtime_ns: int, size: int
) -> MeshTilerConfig:
    _ = (mtime_ns, size)
    return load_mesh_tiler_config(config_path)


def get_mesh_tiler_config(path: Optional[Union[str, Path]] = None) -> MeshTilerConfig:
    resolved = _resolve_config_path(path)
    try:
        stat = resolved.stat()
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"mesh tiler config file not found: {resolved}") from exc
    return _get_mesh_tiler_config_cached(str(resolved), stat.st_mtime_ns, stat.st_size)


get_mesh_tiler_config.cache_clear = _get_mesh_tiler_config_cached.cache_clear  # type: ignore[attr-defined]
