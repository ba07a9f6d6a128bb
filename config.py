"""Configuration loading for the image relay watcher."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


@dataclass
class RelayConfig:
    """Options for one watch pipeline.

    `processed_dir` and `discard_dir` default to siblings of `watch_dir`.
    """

    watch_dir: Path = Path("incoming")
    processed_dir: Optional[Path] = None
    discard_dir: Optional[Path] = None
    credentials_dir: Optional[Path] = None
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    slack_token: str = ""
    slack_channel: str = ""
    workers: int = 1
    queue_size: int = 1000
    settle_seconds: float = 0.5
    max_tries: int = 10
    upload_timeout: float = 30.0
    upload_attempts: int = 1
    discard_on_upload_failure: bool = False
    relocate_images: bool = False
    scan_existing: bool = False

    def __post_init__(self) -> None:
        if not self.slack_token:
            self.slack_token = os.environ.get("SLACK_TOKEN", "")
        if not self.slack_channel:
            self.slack_channel = os.environ.get("SLACK_CHANNEL", "")


_PATH_FIELDS = {"watch_dir", "processed_dir", "discard_dir", "credentials_dir", "log_dir"}
_STR_FIELDS = {"log_level", "slack_token", "slack_channel"}
_INT_FIELDS = {"workers", "queue_size", "max_tries", "upload_attempts"}
_FLOAT_FIELDS = {"settle_seconds", "upload_timeout"}
_BOOL_FIELDS = {"discard_on_upload_failure", "relocate_images", "scan_existing"}


def load_config(path: Path) -> RelayConfig:
    """Load and validate a YAML configuration file."""

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML configuration: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    return config_from_mapping(data, base_dir=path.parent)


def config_from_mapping(data: Dict[str, Any], base_dir: Optional[Path] = None) -> RelayConfig:
    known = {f.name for f in fields(RelayConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    for key, raw in data.items():
        if raw is None:
            continue
        values[key] = _coerce(key, raw, base_dir)

    config = RelayConfig(**values)
    if config.workers < 1:
        raise ConfigError("workers must be at least 1")
    if config.queue_size < 0:
        raise ConfigError("queue_size must not be negative")
    if config.max_tries < 1:
        raise ConfigError("max_tries must be at least 1")
    if config.upload_attempts < 1:
        raise ConfigError("upload_attempts must be at least 1")
    if config.settle_seconds < 0 or config.upload_timeout <= 0:
        raise ConfigError("settle_seconds must be >= 0 and upload_timeout > 0")
    return config


def _coerce(key: str, raw: Any, base_dir: Optional[Path]) -> Any:
    if key in _PATH_FIELDS:
        if not isinstance(raw, str):
            raise ConfigError(f"{key} must be a string path")
        path = Path(raw).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = (base_dir / path).resolve()
        return path
    if key in _STR_FIELDS:
        if not isinstance(raw, str):
            raise ConfigError(f"{key} must be a string")
        return raw
    if key in _BOOL_FIELDS:
        if not isinstance(raw, bool):
            raise ConfigError(f"{key} must be a boolean")
        return raw
    if key in _INT_FIELDS:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ConfigError(f"{key} must be an integer")
        return raw
    if key in _FLOAT_FIELDS:
        if isinstance(raw, bool):
            raise ConfigError(f"{key} must be numeric")
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{key} must be numeric") from exc
    raise ConfigError(f"Unsupported configuration key: {key}")
