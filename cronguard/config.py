"""
Loading and validation of the guard configuration.

The configuration is a flat mapping, written as YAML or, for files ending in
``.toml``, as TOML. It is read once at process start and never mutated
afterwards.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .errors import ConfigError


DEFAULT_CONFIG = "cronguard.yaml"
DEFAULT_LOG_PATH = "log/"
DEFAULT_LOG_NAME = "current.log"
DEFAULT_LOG_MAX_SIZE = 10.0
DEFAULT_LOG_MAX_AGE = 90
DEFAULT_LOG_MAX_COUNT = 10
DEFAULT_PID = "pid/cron.pid"
DEFAULT_HEALTHCHECKS_TIMEOUT = 10.0

KNOWN_KEYS = {
    "LogPath",
    "LogName",
    "LogMaxSize",
    "LogMaxAge",
    "LogMaxCount",
    "PID",
    "Debug",
    "HealthChecksUrl",
    "HealthChecksTimeout",
}


def normalize_log_path(value: str) -> str:
    path = value.strip()
    if not path.endswith("/"):
        path += "/"
    return path


@dataclass(frozen=True)
class Configuration:
    log_path: str = DEFAULT_LOG_PATH
    log_name: str = DEFAULT_LOG_NAME
    log_max_size: float = DEFAULT_LOG_MAX_SIZE
    log_max_age: int = DEFAULT_LOG_MAX_AGE
    log_max_count: int = DEFAULT_LOG_MAX_COUNT
    pid: str = DEFAULT_PID
    debug: bool = False
    healthchecks_url: str = ""
    healthchecks_timeout: float = DEFAULT_HEALTHCHECKS_TIMEOUT

    def __post_init__(self) -> None:
        # Frozen, so normalize through object.__setattr__ exactly once.
        object.__setattr__(self, "log_path", normalize_log_path(self.log_path))
        object.__setattr__(self, "healthchecks_url", self.healthchecks_url.strip())

    @staticmethod
    def defaults() -> "Configuration":
        return Configuration()

    @property
    def log_dir(self) -> Path:
        return Path(self.log_path)

    @property
    def log_file(self) -> Path:
        return self.log_dir / self.log_name

    @property
    def pid_file(self) -> Path:
        return Path(self.pid)

    @property
    def pid_dir(self) -> Path:
        return self.pid_file.parent

    @property
    def healthchecks_enabled(self) -> bool:
        return bool(self.healthchecks_url)


def ensure_bool(value: Any, field_path: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be true or false.")
    return value


def ensure_int(value: Any, field_path: str, default: int, minimum: int = 1) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Error: {field_path} must be an integer.")
    if value < minimum:
        raise ConfigError(f"Error: {field_path} must be >= {minimum}.")
    return value


def ensure_positive_float(value: Any, field_path: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Error: {field_path} must be a number.")
    if value <= 0:
        raise ConfigError(f"Error: {field_path} must be > 0.")
    return float(value)


def ensure_str(value: Any, field_path: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Error: {field_path} must be a non-empty string.")
    return value.strip()


def parse_healthchecks_url(value: Any, field_path: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"Error: {field_path} must be a string.")
    url = value.strip()
    if url and not (url.startswith("http://") or url.startswith("https://")):
        raise ConfigError(f"Error: {field_path} must be an HTTP URL.")
    return url


def _load_config_payload(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Error: Config file not found: {config_path}")

    text = config_path.read_text(encoding="utf-8")
    if config_path.suffix.lower() == ".toml":
        try:
            payload = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Error: Failed to parse TOML in {config_path}: {exc}") from exc
        return payload

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Error: Failed to parse YAML in {config_path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError("Error: Top-level config must be a mapping.")
    return payload


def parse_config(payload: Dict[str, Any]) -> Configuration:
    unknown = set(payload.keys()) - KNOWN_KEYS
    if unknown:
        raise ConfigError(f"Error: Unknown top-level keys: {sorted(unknown)}.")

    log_name = ensure_str(payload.get("LogName"), "LogName", DEFAULT_LOG_NAME)
    if "/" in log_name or os.sep in log_name:
        raise ConfigError("Error: LogName must be a file name, not a path.")

    return Configuration(
        log_path=ensure_str(payload.get("LogPath"), "LogPath", DEFAULT_LOG_PATH),
        log_name=log_name,
        log_max_size=ensure_positive_float(payload.get("LogMaxSize"), "LogMaxSize", DEFAULT_LOG_MAX_SIZE),
        log_max_age=ensure_int(payload.get("LogMaxAge"), "LogMaxAge", DEFAULT_LOG_MAX_AGE, 0),
        log_max_count=ensure_int(payload.get("LogMaxCount"), "LogMaxCount", DEFAULT_LOG_MAX_COUNT, 0),
        pid=ensure_str(payload.get("PID"), "PID", DEFAULT_PID),
        debug=ensure_bool(payload.get("Debug"), "Debug", False),
        healthchecks_url=parse_healthchecks_url(payload.get("HealthChecksUrl"), "HealthChecksUrl"),
        healthchecks_timeout=ensure_positive_float(
            payload.get("HealthChecksTimeout"),
            "HealthChecksTimeout",
            DEFAULT_HEALTHCHECKS_TIMEOUT,
        ),
    )


def load_config(config_path: Path) -> Configuration:
    return parse_config(_load_config_payload(config_path))
