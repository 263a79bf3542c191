"""Decoding of per-container ``log-opt`` values into typed configuration.

The daemon hands every logging plugin a flat ``str -> str`` map. This module
is the only place where that map is interpreted: each option has its own
decoder, defaults come from the immutable tables below, and the first failure
is raised with the option name in its message and the original error chained
as ``__cause__``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Pattern, Sequence, Union

from .logging import get_logger
from .units import parse_bool, parse_bytes, parse_duration, parse_int

CFG_URL_KEY = "url"
CFG_TOKEN_KEY = "token"
CFG_CHAT_ID_KEY = "chat_id"
CFG_RETRIES_KEY = "retries"
CFG_TIMEOUT_KEY = "timeout"
CFG_TEMPLATE_KEY = "template"
CFG_FILTER_REGEX_KEY = "filter-regex"
CFG_MAX_BUFFER_SIZE_KEY = "max-buffer-size"
CFG_MESSAGE_THREAD_ID_KEY = "message_thread_id"
CFG_BATCH_ENABLED_KEY = "batch-enabled"
CFG_BATCH_FLUSH_INTERVAL_KEY = "batch-flush-interval"
CFG_LABELS_KEY = "labels"
CFG_LABELS_REGEX_KEY = "labels-regex"
CFG_ENV_KEY = "env"
CFG_ENV_REGEX_KEY = "env-regex"

DEFAULT_API_URL = "https://api.telegram.org"
DEFAULT_TEMPLATE = "{container_name} | {log}"

RawConfig = Mapping[str, str]

_logger = get_logger("telegram.options")


class ConfigError(ValueError):
    """Raised when log options cannot be turned into a configuration."""

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(message)
        self.option = option


class OptionError(ConfigError):
    """A single option was rejected."""


class OptionParseError(OptionError):
    """An option value does not have the expected format."""


class InvalidOptionError(OptionError):
    """An option value parsed but is outside the accepted range."""


@dataclass(frozen=True)
class ContainerDetails:
    """Container metadata sent by the daemon with ``StartLogging``."""

    config: Mapping[str, str] = field(default_factory=dict)
    container_id: str = ""
    container_name: str = ""
    container_entrypoint: str = ""
    container_args: Sequence[str] = ()
    container_image_id: str = ""
    container_image_name: str = ""
    container_created: Optional[str] = None
    container_env: Sequence[str] = ()
    container_labels: Mapping[str, str] = field(default_factory=dict)
    log_path: str = ""
    daemon_name: str = ""

    @property
    def short_id(self) -> str:
        return self.container_id[:12]

    @property
    def name(self) -> str:
        return self.container_name.lstrip("/")

    def env_mapping(self) -> Dict[str, str]:
        """Return ``container_env`` as a mapping, skipping entries without ``=``."""

        mapping: Dict[str, str] = {}
        for entry in self.container_env:
            key, sep, value = entry.partition("=")
            if sep:
                mapping[key] = value
        return mapping


@dataclass(frozen=True)
class ClientConfig:
    """Connection and delivery settings for the Telegram Bot API."""

    api_url: str = DEFAULT_API_URL
    token: str = ""
    chat_id: str = ""
    retries: int = 5
    timeout: timedelta = timedelta(seconds=10)

    def logging_dict(self) -> Dict[str, Any]:
        return {
            "api_url": self.api_url,
            "token": "***REDACTED***" if self.token else None,
            "chat_id": self.chat_id,
            "retries": self.retries,
            "timeout": self.timeout.total_seconds(),
        }


@dataclass(frozen=True)
class LoggerConfig:
    """Formatting, batching and filtering settings for one container."""

    client: ClientConfig = ClientConfig()
    attrs: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    template: str = DEFAULT_TEMPLATE
    max_buffer_size: int = 1024 * 1024
    filter_regex: Optional[Pattern[str]] = None
    message_thread_id: int = 0
    batch_enabled: bool = True
    batch_flush_interval: timedelta = timedelta(seconds=3)

    def logging_dict(self) -> Dict[str, Any]:
        return {
            "client": self.client.logging_dict(),
            "attrs": dict(self.attrs),
            "template": self.template,
            "max_buffer_size": self.max_buffer_size,
            "filter_regex": self.filter_regex.pattern if self.filter_regex else None,
            "message_thread_id": self.message_thread_id,
            "batch_enabled": self.batch_enabled,
            "batch_flush_interval": self.batch_flush_interval.total_seconds(),
        }


DEFAULT_CLIENT_CONFIG = ClientConfig()
DEFAULT_LOGGER_CONFIG = LoggerConfig()


def parse_client_config(config: RawConfig) -> ClientConfig:
    """Decode the Bot API connection options.

    ``token`` and ``chat_id`` are copied through as given; checking that they
    are set is left to whoever starts the sink.
    """

    # Keyword arguments are evaluated left to right, which fixes the order
    # in which failures are reported.
    return replace(
        DEFAULT_CLIENT_CONFIG,
        api_url=config.get(CFG_URL_KEY) or DEFAULT_CLIENT_CONFIG.api_url,
        token=config.get(CFG_TOKEN_KEY, ""),
        chat_id=config.get(CFG_CHAT_ID_KEY, ""),
        retries=_parse_retries(config),
        timeout=_parse_timeout(config),
    )


def parse_logger_config(details: Union[ContainerDetails, RawConfig]) -> LoggerConfig:
    """Decode every option for a container into a :class:`LoggerConfig`."""

    if not isinstance(details, ContainerDetails):
        details = ContainerDetails(config=dict(details))
    config = details.config

    try:
        client = parse_client_config(config)
    except ConfigError as exc:
        raise ConfigError(f"failed to parse client config: {exc}", exc.option) from exc

    try:
        attrs = extra_attributes(details)
    except re.error as exc:
        raise ConfigError(f"failed to parse extra attributes: {exc}") from exc

    template = config.get(CFG_TEMPLATE_KEY) or DEFAULT_LOGGER_CONFIG.template
    filter_regex = _parse_filter_regex(config)
    max_buffer_size = _parse_max_buffer_size(config)
    message_thread_id = _parse_message_thread_id(config)
    batch_enabled = _parse_batch_enabled(config)
    batch_flush_interval = _parse_batch_flush_interval(config, batch_enabled)

    return replace(
        DEFAULT_LOGGER_CONFIG,
        client=client,
        attrs=attrs,
        template=template,
        filter_regex=filter_regex,
        max_buffer_size=max_buffer_size,
        message_thread_id=message_thread_id,
        batch_enabled=batch_enabled,
        batch_flush_interval=batch_flush_interval,
    )


def extra_attributes(details: ContainerDetails) -> Dict[str, str]:
    """Select labels and environment variables to attach to messages.

    ``labels``/``env`` name entries explicitly (comma separated) and
    ``labels-regex``/``env-regex`` select every entry whose name matches.
    Raises :class:`re.error` when a selection pattern does not compile.
    """

    config = details.config
    extra: Dict[str, str] = {}

    labels = config.get(CFG_LABELS_KEY)
    if labels:
        for name in labels.split(","):
            if name in details.container_labels:
                extra[name] = details.container_labels[name]

    labels_regex = config.get(CFG_LABELS_REGEX_KEY)
    if labels_regex:
        pattern = re.compile(labels_regex)
        for name, value in details.container_labels.items():
            if pattern.search(name):
                extra[name] = value

    env_mapping = details.env_mapping()
    env = config.get(CFG_ENV_KEY)
    if env:
        for name in env.split(","):
            if name in env_mapping:
                extra[name] = env_mapping[name]

    env_regex = config.get(CFG_ENV_REGEX_KEY)
    if env_regex:
        pattern = re.compile(env_regex)
        for name, value in env_mapping.items():
            if pattern.search(name):
                extra[name] = value

    return extra


def _parse_retries(config: RawConfig) -> int:
    raw = config.get(CFG_RETRIES_KEY)
    if raw is None:
        return DEFAULT_CLIENT_CONFIG.retries
    try:
        retries = parse_int(raw)
    except ValueError as exc:
        raise OptionParseError(
            f'failed to parse "{CFG_RETRIES_KEY}" option: {exc}', CFG_RETRIES_KEY
        ) from exc
    if retries < 0:
        raise InvalidOptionError(
            f'invalid "{CFG_RETRIES_KEY}" option: must not be negative, got {retries}',
            CFG_RETRIES_KEY,
        )
    return retries


def _parse_timeout(config: RawConfig) -> timedelta:
    raw = config.get(CFG_TIMEOUT_KEY)
    if raw is None:
        return DEFAULT_CLIENT_CONFIG.timeout
    try:
        return parse_duration(raw)
    except ValueError as exc:
        raise OptionParseError(
            f'failed to parse "{CFG_TIMEOUT_KEY}" option: {exc}', CFG_TIMEOUT_KEY
        ) from exc


def _parse_filter_regex(config: RawConfig) -> Optional[Pattern[str]]:
    raw = config.get(CFG_FILTER_REGEX_KEY)
    if raw is None:
        return None
    try:
        return re.compile(raw)
    except re.error as exc:
        raise OptionParseError(
            f'failed to parse "{CFG_FILTER_REGEX_KEY}": {exc}', CFG_FILTER_REGEX_KEY
        ) from exc


def _parse_max_buffer_size(config: RawConfig) -> int:
    raw = config.get(CFG_MAX_BUFFER_SIZE_KEY)
    if raw is None:
        return DEFAULT_LOGGER_CONFIG.max_buffer_size
    try:
        size = parse_bytes(raw)
    except ValueError as exc:
        raise OptionParseError(
            f'failed to parse "{CFG_MAX_BUFFER_SIZE_KEY}" option: {exc}',
            CFG_MAX_BUFFER_SIZE_KEY,
        ) from exc
    # Same wording as the format error; existing deployments match on it.
    if size <= 0:
        raise InvalidOptionError(
            f'failed to parse "{CFG_MAX_BUFFER_SIZE_KEY}" option: size must be positive, got {size}',
            CFG_MAX_BUFFER_SIZE_KEY,
        )
    return size


def _parse_message_thread_id(config: RawConfig) -> int:
    raw = config.get(CFG_MESSAGE_THREAD_ID_KEY)
    if raw is None:
        return DEFAULT_LOGGER_CONFIG.message_thread_id
    try:
        return parse_int(raw)
    except ValueError:
        _logger.warning(
            "Ignoring malformed message thread id",
            extra={"option": CFG_MESSAGE_THREAD_ID_KEY, "value": raw},
        )
        return DEFAULT_LOGGER_CONFIG.message_thread_id


def _parse_batch_enabled(config: RawConfig) -> bool:
    raw = config.get(CFG_BATCH_ENABLED_KEY)
    if raw is None:
        return DEFAULT_LOGGER_CONFIG.batch_enabled
    try:
        return parse_bool(raw)
    except ValueError as exc:
        raise OptionParseError(
            f'failed to parse "{CFG_BATCH_ENABLED_KEY}" option: {exc}', CFG_BATCH_ENABLED_KEY
        ) from exc


def _parse_batch_flush_interval(config: RawConfig, batch_enabled: bool) -> timedelta:
    raw = config.get(CFG_BATCH_FLUSH_INTERVAL_KEY)
    if raw is None:
        return DEFAULT_LOGGER_CONFIG.batch_flush_interval
    try:
        interval = parse_duration(raw)
    except ValueError as exc:
        raise OptionParseError(
            f'failed to parse "{CFG_BATCH_FLUSH_INTERVAL_KEY}": {exc}',
            CFG_BATCH_FLUSH_INTERVAL_KEY,
        ) from exc
    if batch_enabled and interval <= timedelta(0):
        raise InvalidOptionError(
            f'invalid "{CFG_BATCH_FLUSH_INTERVAL_KEY}" option: must be positive, got {raw}',
            CFG_BATCH_FLUSH_INTERVAL_KEY,
        )
    return interval
