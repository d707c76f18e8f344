"""Runtime configuration loaded from YAML for nekosubs."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union, get_args, get_origin, get_type_hints

import yaml

from .config import PACKAGE_ROOT

CONFIG_ENV_VAR = "NEKOSUBS_CONFIG"
DEFAULT_CONFIG_FILENAME = "config.yaml"


class OutputContainer(str, Enum):
    """Containers the merged output can be written to."""

    MP4 = "mp4"
    MKV = "mkv"


class CompressionLevel(str, Enum):
    """Named compression tiers, ordered from largest/best to smallest file."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


def _resolve_path(value: str | Path | None) -> Optional[Path]:
    if value is None or value == "":
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    return path


def _unwrap_optional(type_hint: Any) -> Any:
    origin = get_origin(type_hint)
    if origin is Union:
        args = [arg for arg in get_args(type_hint) if arg is not type(None)]
        return args[0] if args else Any
    return type_hint


@dataclass(slots=True)
class PathsSettings:
    """Filesystem locations used by the batch runner."""

    output_dir: Optional[Path] = None
    log_dir: Optional[Path] = None


@dataclass(slots=True)
class FFmpegSettings:
    """How the FFmpeg executable is located and supervised."""

    binary: str = "ffmpeg"
    overwrite: bool = True
    kill_timeout: float = 2.0


@dataclass(slots=True)
class MergeSettings:
    """Defaults applied to every batch unless overridden by the caller."""

    container: str = OutputContainer.MP4.value
    compression: str = CompressionLevel.MEDIUM.value
    auto_match_subtitles: bool = True


@dataclass(frozen=True, slots=True)
class BatchSettings:
    """Settings captured when a batch starts and applied to every job in it."""

    output_directory: Optional[Path] = None
    output_container: OutputContainer = OutputContainer.MP4
    compression_level: CompressionLevel = CompressionLevel.MEDIUM
    overwrite: bool = True


@dataclass(slots=True)
class AppSettings:
    """Top-level settings exposed to the rest of the application."""

    paths: PathsSettings = field(default_factory=PathsSettings)
    ffmpeg: FFmpegSettings = field(default_factory=FFmpegSettings)
    merge: MergeSettings = field(default_factory=MergeSettings)

    def batch_settings(
        self,
        *,
        output_directory: Optional[Path] = None,
        container: Optional[str] = None,
        compression: Optional[str] = None,
    ) -> BatchSettings:
        """Build :class:`BatchSettings` from the configured defaults and overrides."""

        return BatchSettings(
            output_directory=_resolve_path(output_directory) or self.paths.output_dir,
            output_container=OutputContainer(container or self.merge.container),
            compression_level=CompressionLevel(compression or self.merge.compression),
            overwrite=self.ffmpeg.overwrite,
        )


def _coerce_value(value: Any, target_type: Any) -> Any:
    """Convert ``value`` into ``target_type`` when possible."""

    base_type = _unwrap_optional(target_type)
    if base_type is Path:
        return _resolve_path(value)
    if base_type is str:
        return None if value is None else str(value)
    if base_type is int:
        return None if value is None else int(value)
    if base_type is float:
        return None if value is None else float(value)
    if base_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"true", "1", "yes", "on"}:
                return True
            if lowered in {"false", "0", "no", "off"}:
                return False
        return bool(value)
    return value


def _merge_dataclass(instance: Any, data: dict[str, Any]) -> Any:
    # Postponed annotations leave ``field.type`` as a string
    hints = get_type_hints(type(instance))
    for field_info in fields(instance):
        key = field_info.name
        if key not in data:
            continue
        value = data[key]
        current = getattr(instance, key)
        if is_dataclass(current) and isinstance(value, dict):
            _merge_dataclass(current, value)
        else:
            coerced = _coerce_value(value, hints.get(key, field_info.type))
            setattr(instance, key, coerced)
    return instance


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load configuration from ``path`` falling back to defaults."""

    config_path = path
    if config_path is None:
        env_value = os.environ.get(CONFIG_ENV_VAR)
        if env_value:
            config_path = Path(env_value).expanduser()
        else:
            config_path = PACKAGE_ROOT / DEFAULT_CONFIG_FILENAME
    config = AppSettings()
    if config_path and Path(config_path).exists():
        with open(config_path, "r", encoding="utf8") as handle:
            payload = yaml.safe_load(handle) or {}
        if isinstance(payload, dict):
            _merge_dataclass(config, payload)
    # Validate enum-backed values early so a bad config fails on load
    OutputContainer(config.merge.container)
    CompressionLevel(config.merge.compression)
    return config


__all__ = [
    "AppSettings",
    "BatchSettings",
    "CompressionLevel",
    "FFmpegSettings",
    "MergeSettings",
    "OutputContainer",
    "PathsSettings",
    "load_settings",
]
