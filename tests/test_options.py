import re
from dataclasses import replace
from datetime import timedelta

import pytest

from telegram_log_driver.options import (
    CFG_BATCH_ENABLED_KEY,
    CFG_BATCH_FLUSH_INTERVAL_KEY,
    CFG_CHAT_ID_KEY,
    CFG_ENV_KEY,
    CFG_ENV_REGEX_KEY,
    CFG_FILTER_REGEX_KEY,
    CFG_LABELS_KEY,
    CFG_LABELS_REGEX_KEY,
    CFG_MAX_BUFFER_SIZE_KEY,
    CFG_MESSAGE_THREAD_ID_KEY,
    CFG_RETRIES_KEY,
    CFG_TEMPLATE_KEY,
    CFG_TIMEOUT_KEY,
    CFG_TOKEN_KEY,
    CFG_URL_KEY,
    DEFAULT_CLIENT_CONFIG,
    DEFAULT_LOGGER_CONFIG,
    ClientConfig,
    ConfigError,
    ContainerDetails,
    InvalidOptionError,
    LoggerConfig,
    OptionParseError,
    extra_attributes,
    parse_client_config,
    parse_logger_config,
)

REQUIRED = {CFG_TOKEN_KEY: "token", CFG_CHAT_ID_KEY: "chat_id"}


def _client(**overrides: object) -> ClientConfig:
    return replace(DEFAULT_CLIENT_CONFIG, token="token", chat_id="chat_id", **overrides)


def _logger(**overrides: object) -> LoggerConfig:
    return replace(DEFAULT_LOGGER_CONFIG, client=_client(), attrs={}, **overrides)


@pytest.mark.parametrize(
    "options,expected",
    [
        ({}, _client()),
        ({CFG_URL_KEY: "https://custom.url"}, _client(api_url="https://custom.url")),
        ({CFG_URL_KEY: ""}, _client()),
        ({CFG_RETRIES_KEY: "10"}, _client(retries=10)),
        ({CFG_RETRIES_KEY: "0"}, _client(retries=0)),
        ({CFG_TIMEOUT_KEY: "20s"}, _client(timeout=timedelta(seconds=20))),
        ({CFG_TIMEOUT_KEY: "1m30s"}, _client(timeout=timedelta(seconds=90))),
    ],
)
def test_parse_client_config(options: dict, expected: ClientConfig) -> None:
    assert parse_client_config({**REQUIRED, **options}) == expected


@pytest.mark.parametrize(
    "options,error_type,message",
    [
        ({CFG_RETRIES_KEY: "invalid"}, OptionParseError, 'failed to parse "retries" option'),
        ({CFG_RETRIES_KEY: "1.5"}, OptionParseError, 'failed to parse "retries" option'),
        ({CFG_RETRIES_KEY: "-1"}, InvalidOptionError, 'invalid "retries" option'),
        ({CFG_TIMEOUT_KEY: "invalid"}, OptionParseError, 'failed to parse "timeout" option'),
        ({CFG_TIMEOUT_KEY: "20"}, OptionParseError, 'failed to parse "timeout" option'),
    ],
)
def test_parse_client_config_errors(options: dict, error_type: type, message: str) -> None:
    with pytest.raises(error_type, match=re.escape(message)):
        parse_client_config({**REQUIRED, **options})


def test_retries_format_and_range_errors_are_distinct() -> None:
    with pytest.raises(ConfigError) as parse_failure:
        parse_client_config({**REQUIRED, CFG_RETRIES_KEY: "invalid"})
    with pytest.raises(ConfigError) as range_failure:
        parse_client_config({**REQUIRED, CFG_RETRIES_KEY: "-1"})

    assert "invalid \"retries\" option" not in str(parse_failure.value)
    assert "failed to parse" not in str(range_failure.value)
    assert isinstance(parse_failure.value.__cause__, ValueError)
    assert range_failure.value.option == CFG_RETRIES_KEY


def test_client_config_reports_first_failure_in_key_order() -> None:
    with pytest.raises(OptionParseError, match='"retries"'):
        parse_client_config({**REQUIRED, CFG_RETRIES_KEY: "x", CFG_TIMEOUT_KEY: "y"})


def test_missing_credentials_are_copied_through() -> None:
    config = parse_client_config({})
    assert config.token == ""
    assert config.chat_id == ""
    assert config.api_url == DEFAULT_CLIENT_CONFIG.api_url


@pytest.mark.parametrize(
    "options,expected",
    [
        ({}, _logger()),
        (
            {CFG_TEMPLATE_KEY: "{log}", CFG_BATCH_FLUSH_INTERVAL_KEY: "30s"},
            _logger(template="{log}", batch_flush_interval=timedelta(seconds=30)),
        ),
        ({CFG_FILTER_REGEX_KEY: '"ERROR"'}, _logger(filter_regex=re.compile('"ERROR"'))),
        ({CFG_MAX_BUFFER_SIZE_KEY: "100MB"}, _logger(max_buffer_size=100 * 1024 * 1024)),
        ({CFG_MESSAGE_THREAD_ID_KEY: "42"}, _logger(message_thread_id=42)),
        ({CFG_BATCH_ENABLED_KEY: "false"}, _logger(batch_enabled=False)),
        (
            {CFG_BATCH_ENABLED_KEY: "false", CFG_BATCH_FLUSH_INTERVAL_KEY: "0s"},
            _logger(batch_enabled=False, batch_flush_interval=timedelta(0)),
        ),
    ],
)
def test_parse_logger_config(options: dict, expected: LoggerConfig) -> None:
    details = ContainerDetails(config={**REQUIRED, **options})
    assert parse_logger_config(details) == expected


@pytest.mark.parametrize(
    "options,message",
    [
        ({CFG_RETRIES_KEY: "invalid"}, "failed to parse client config"),
        ({CFG_LABELS_REGEX_KEY: r"(.*\("}, "failed to parse extra attributes"),
        ({CFG_ENV_REGEX_KEY: r"(.*\("}, "failed to parse extra attributes"),
        ({CFG_FILTER_REGEX_KEY: r"(.*\("}, 'failed to parse "filter-regex"'),
        ({CFG_BATCH_FLUSH_INTERVAL_KEY: "invalid"}, 'failed to parse "batch-flush-interval"'),
        ({CFG_BATCH_FLUSH_INTERVAL_KEY: "0s"}, 'invalid "batch-flush-interval" option'),
        ({CFG_MAX_BUFFER_SIZE_KEY: "-1"}, 'failed to parse "max-buffer-size" option'),
        ({CFG_MAX_BUFFER_SIZE_KEY: "0"}, 'failed to parse "max-buffer-size" option'),
        ({CFG_MAX_BUFFER_SIZE_KEY: "lots"}, 'failed to parse "max-buffer-size" option'),
        ({CFG_BATCH_ENABLED_KEY: "maybe"}, 'failed to parse "batch-enabled" option'),
    ],
)
def test_parse_logger_config_errors(options: dict, message: str) -> None:
    details = ContainerDetails(config={**REQUIRED, **options})
    with pytest.raises(ConfigError, match=re.escape(message)):
        parse_logger_config(details)


def test_client_failure_is_wrapped_with_cause() -> None:
    with pytest.raises(ConfigError) as excinfo:
        parse_logger_config({**REQUIRED, CFG_RETRIES_KEY: "invalid"})
    assert str(excinfo.value).startswith("failed to parse client config")
    assert isinstance(excinfo.value.__cause__, OptionParseError)
    assert 'failed to parse "retries" option' in str(excinfo.value)


def test_attribute_failure_only_affects_logger_config() -> None:
    options = {**REQUIRED, CFG_LABELS_REGEX_KEY: r"(.*\("}
    assert parse_client_config(options) == _client()
    with pytest.raises(ConfigError, match="failed to parse extra attributes") as excinfo:
        parse_logger_config(options)
    assert isinstance(excinfo.value.__cause__, re.error)


def test_max_buffer_size_errors_share_message() -> None:
    with pytest.raises(OptionParseError) as malformed:
        parse_logger_config({**REQUIRED, CFG_MAX_BUFFER_SIZE_KEY: "-1"})
    with pytest.raises(InvalidOptionError) as non_positive:
        parse_logger_config({**REQUIRED, CFG_MAX_BUFFER_SIZE_KEY: "0"})
    prefix = 'failed to parse "max-buffer-size" option'
    assert str(malformed.value).startswith(prefix)
    assert str(non_positive.value).startswith(prefix)


@pytest.mark.parametrize(
    "options,message",
    [
        ({CFG_TIMEOUT_KEY: "99999999999999h"}, 'failed to parse "timeout" option'),
        ({CFG_TIMEOUT_KEY: "2562048h"}, 'failed to parse "timeout" option'),
        ({CFG_RETRIES_KEY: "99999999999999999999999"}, 'failed to parse "retries" option'),
        ({CFG_BATCH_FLUSH_INTERVAL_KEY: "99999999999999h"}, 'failed to parse "batch-flush-interval"'),
        ({CFG_MAX_BUFFER_SIZE_KEY: "9" * 400}, 'failed to parse "max-buffer-size" option'),
        ({CFG_MAX_BUFFER_SIZE_KEY: "99999999999p"}, 'failed to parse "max-buffer-size" option'),
    ],
)
def test_out_of_range_values_are_parse_errors(options: dict, message: str) -> None:
    with pytest.raises(ConfigError, match=re.escape(message)) as excinfo:
        parse_logger_config({**REQUIRED, **options})
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_filter_regex_matches_like_compiled_pattern() -> None:
    pattern = r"level=(error|fatal)"
    config = parse_logger_config({**REQUIRED, CFG_FILTER_REGEX_KEY: pattern})
    direct = re.compile(pattern)
    for line in ("level=error boom", "level=info ok", "LEVEL=ERROR", "level=fatal"):
        assert bool(config.filter_regex.search(line)) == bool(direct.search(line))


def test_malformed_message_thread_id_falls_back_to_default() -> None:
    config = parse_logger_config({**REQUIRED, CFG_MESSAGE_THREAD_ID_KEY: "message_thread_id"})
    assert config.message_thread_id == 0


def test_defaults_and_empty_attrs() -> None:
    config = parse_logger_config(REQUIRED)
    assert config.attrs == {}
    assert config.attrs is not None
    assert config.filter_regex is None
    assert config.template == DEFAULT_LOGGER_CONFIG.template
    assert config.max_buffer_size == DEFAULT_LOGGER_CONFIG.max_buffer_size
    assert config.batch_enabled == DEFAULT_LOGGER_CONFIG.batch_enabled
    assert config.batch_flush_interval == DEFAULT_LOGGER_CONFIG.batch_flush_interval


def test_parsing_is_idempotent() -> None:
    details = ContainerDetails(
        config={
            **REQUIRED,
            CFG_FILTER_REGEX_KEY: "ERROR",
            CFG_LABELS_KEY: "team",
            CFG_MAX_BUFFER_SIZE_KEY: "2k",
        },
        container_labels={"team": "infra"},
    )
    assert parse_logger_config(details) == parse_logger_config(details)


def test_default_tables_are_immutable() -> None:
    with pytest.raises(AttributeError):
        DEFAULT_CLIENT_CONFIG.retries = 1  # type: ignore[misc]
    with pytest.raises(AttributeError):
        DEFAULT_LOGGER_CONFIG.template = "x"  # type: ignore[misc]
    with pytest.raises(TypeError):
        DEFAULT_LOGGER_CONFIG.attrs["x"] = "y"  # type: ignore[index]
    assert DEFAULT_LOGGER_CONFIG.attrs == {}


def test_parsing_does_not_leak_into_defaults() -> None:
    config = parse_logger_config({**REQUIRED, CFG_LABELS_KEY: "a"})
    config.attrs["mutated"] = "yes"  # type: ignore[index]
    assert DEFAULT_LOGGER_CONFIG.attrs == {}
    assert parse_logger_config(REQUIRED).attrs == {}


def test_extra_attributes_from_labels_and_env() -> None:
    details = ContainerDetails(
        config={
            CFG_LABELS_KEY: "team,missing",
            CFG_LABELS_REGEX_KEY: r"^com\.example\.",
            CFG_ENV_KEY: "STAGE",
            CFG_ENV_REGEX_KEY: "^APP_",
        },
        container_labels={
            "team": "infra",
            "com.example.service": "api",
            "unrelated": "x",
        },
        container_env=("STAGE=prod", "APP_VERSION=1.2", "PATH=/usr/bin", "BROKEN"),
    )
    assert extra_attributes(details) == {
        "team": "infra",
        "com.example.service": "api",
        "STAGE": "prod",
        "APP_VERSION": "1.2",
    }


def test_extra_attributes_ignore_empty_selectors() -> None:
    details = ContainerDetails(
        config={CFG_LABELS_KEY: "", CFG_LABELS_REGEX_KEY: ""},
        container_labels={"team": "infra"},
    )
    assert extra_attributes(details) == {}


def test_unknown_keys_are_ignored() -> None:
    assert parse_logger_config({**REQUIRED, "mode": "non-blocking"}) == _logger()


def test_logging_dict_masks_token() -> None:
    config = parse_logger_config({**REQUIRED, CFG_FILTER_REGEX_KEY: "ERROR"})
    logged = config.logging_dict()
    assert logged["client"]["token"] == "***REDACTED***"
    assert logged["filter_regex"] == "ERROR"


def test_container_details_helpers() -> None:
    details = ContainerDetails(container_id="0123456789abcdef", container_name="/web")
    assert details.short_id == "0123456789ab"
    assert details.name == "web"
