"""Configuration loading for the Telegram log driver plugin process.

Per-container settings arrive with each ``StartLogging`` call and are decoded
by :mod:`telegram_log_driver.options`; this module only covers the daemon.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore


CONFIG_ENV_PREFIX = "TELEGRAM_LOG_DRIVER_"
CONFIG_VERSION = 1
MIN_SUPPORTED_CONFIG_VERSION = 1

DEFAULT_SOCKET_PATH = Path("/run/docker/plugins/telegram.sock")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Plugin process configuration."""

    socket_path: Path = DEFAULT_SOCKET_PATH
    log_format: str = "plain"
    log_level: str = "INFO"
    api_log_level: Optional[str] = None
    driver_log_level: Optional[str] = None
    client_log_level: Optional[str] = None
    backoff_base: float = 1.0
    backoff_factor: float = 2.0
    backoff_max: float = 30.0
    max_entry_size: int = 1_000_000
    shutdown_timeout: float = 10.0
    dry_run: bool = False
    config_version: int = CONFIG_VERSION

    def __post_init__(self) -> None:
        _validate_config(self)

    def logging_dict(self) -> Dict[str, Any]:
        """Return a mapping suitable for structured logging."""

        return {
            "config_version": self.config_version,
            "socket_path": str(self.socket_path),
            "log_format": self.log_format,
            "log_level": self.log_level,
            "api_log_level": self.api_log_level,
            "driver_log_level": self.driver_log_level,
            "client_log_level": self.client_log_level,
            "backoff_base": self.backoff_base,
            "backoff_factor": self.backoff_factor,
            "backoff_max": self.backoff_max,
            "max_entry_size": self.max_entry_size,
            "shutdown_timeout": self.shutdown_timeout,
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_sources(cls, cli_args: Optional[Iterable[str]] = None) -> "Config":
        """Load configuration from defaults, file, env, and CLI (in that order)."""

        args = _parse_cli(cli_args)
        file_config = _load_file_config(
            args.config
            or _coerce_path(os.environ.get(f"{CONFIG_ENV_PREFIX}CONFIG") or "")
            or None
        )
        env_config = _load_env_config(CONFIG_ENV_PREFIX)
        cli_config = _cli_overrides(args)

        config = cls()
        config = _apply_mapping(config, file_config)
        config = _apply_mapping(config, env_config)
        config = _apply_mapping(config, cli_config)
        return config


def _validate_config(config: Config) -> None:
    _validate_version(config.config_version)
    if config.log_format not in {"plain", "json"}:
        raise ValueError(f"log_format must be 'plain' or 'json'; got {config.log_format}.")
    _validate_range("backoff_base", config.backoff_base, 0.0, 300.0)
    _validate_range("backoff_factor", config.backoff_factor, 1.0, 10.0)
    _validate_range("backoff_max", config.backoff_max, 0.0, 3600.0)
    _validate_range("max_entry_size", config.max_entry_size, 1024, 64 * 1024 * 1024)
    _validate_range("shutdown_timeout", config.shutdown_timeout, 0.0, 600.0)
    for field_name, value in (
        ("log_level", config.log_level),
        ("api_log_level", config.api_log_level),
        ("driver_log_level", config.driver_log_level),
        ("client_log_level", config.client_log_level),
    ):
        _validate_log_level_value(value, field_name)


def _validate_version(version: int) -> None:
    if version < MIN_SUPPORTED_CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is too old; minimum supported is {MIN_SUPPORTED_CONFIG_VERSION}."
        )
    if version > CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is newer than supported ({CONFIG_VERSION}); please upgrade the plugin."
        )


def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}; got {value}.")


def _validate_log_level_value(value: Optional[str], name: str) -> None:
    if value is None:
        return
    if value.upper() not in _LOG_LEVELS:
        raise ValueError(f"{name} must be one of {sorted(_LOG_LEVELS)}; got {value}.")


def _parse_cli(cli_args: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="telegram-log-driver",
        description="Run the Telegram logging plugin for Docker.",
    )
    parser.add_argument("--config", type=Path, help="Path to TOML config file.")
    parser.add_argument(
        "--socket-path",
        type=Path,
        help="Unix socket the plugin API listens on.",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        help="Structured logging format.",
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        help="Log verbosity level.",
    )
    parser.add_argument(
        "--api-log-level",
        choices=_LOG_LEVELS,
        help="Log verbosity for the plugin API.",
    )
    parser.add_argument(
        "--driver-log-level",
        choices=_LOG_LEVELS,
        help="Log verbosity for log stream handling.",
    )
    parser.add_argument(
        "--client-log-level",
        choices=_LOG_LEVELS,
        help="Log verbosity for Telegram API calls.",
    )
    parser.add_argument(
        "--backoff-base",
        type=float,
        help="Initial delay in seconds between Telegram retries.",
    )
    parser.add_argument(
        "--backoff-factor",
        type=float,
        help="Multiplier applied to the delay after each failed attempt.",
    )
    parser.add_argument(
        "--backoff-max",
        type=float,
        help="Maximum delay in seconds between Telegram retries.",
    )
    parser.add_argument(
        "--max-entry-size",
        type=int,
        help="Largest log entry frame in bytes accepted from the daemon.",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        help="Seconds to wait for pending messages when a stream stops.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log messages instead of sending them to Telegram.",
    )
    parser.add_argument(
        "--config-version",
        type=int,
        help="Version of the configuration schema being supplied.",
    )
    return parser.parse_args(args=cli_args)


def _load_file_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as f:
        parsed = tomllib.load(f)
    if not isinstance(parsed, Mapping):
        raise ValueError("Configuration file must contain a TOML table.")
    return {k.replace("-", "_"): v for k, v in parsed.items()}


def _load_env_config(prefix: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for field in Config.__dataclass_fields__:
        env_key = f"{prefix}{field}".upper()
        if env_key in os.environ:
            mapping[field] = os.environ[env_key]
    return mapping


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {k: v for k, v in vars(args).items() if k != "config" and v is not None}


def _apply_mapping(config: Config, overrides: Mapping[str, Any]) -> Config:
    data: MutableMapping[str, Any] = {}
    for key, value in overrides.items():
        if value is None or key not in Config.__dataclass_fields__:
            continue
        if key == "socket_path":
            path = _coerce_path(value)
            if path is not None:
                data[key] = path
        elif key in {"max_entry_size", "config_version"}:
            data[key] = int(value)
        elif key in {"backoff_base", "backoff_factor", "backoff_max", "shutdown_timeout"}:
            data[key] = float(value)
        elif key == "log_format":
            data[key] = str(value).lower()
        elif key in {"log_level", "api_log_level", "driver_log_level", "client_log_level"}:
            data[key] = str(value).upper()
        elif key == "dry_run":
            data[key] = _coerce_bool(value)
        else:
            data[key] = value
    return replace(config, **data)


def _coerce_path(value: Any) -> Optional[Path]:
    if isinstance(value, Path):
        return value
    if not value:
        return None
    return Path(str(value)).expanduser()


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def load_config(cli_args: Optional[Iterable[str]] = None) -> Config:
    """Public helper used by the entrypoint."""

    try:
        return Config.from_sources(cli_args)
    except Exception as exc:  # pragma: no cover - reported before logging is configured
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        raise
