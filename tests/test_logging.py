import json
import logging

from telegram_log_driver.config import Config
from telegram_log_driver.logging import JsonFormatter, configure_logging, get_logger, redact_mapping


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord("telegram.driver", logging.INFO, __file__, 1, "Started logging", None, None)
    record.container_id = "abc123"
    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Started logging"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "telegram.driver"
    assert payload["container_id"] == "abc123"
    assert "msg" not in payload


def test_redact_mapping_masks_secrets() -> None:
    redacted = redact_mapping({"Token": "123:abc", "chat_id": "42", "secret": "x"}, extra_keys=["SECRET"])
    assert redacted == {"Token": "***REDACTED***", "chat_id": "42", "secret": "***REDACTED***"}


def test_configure_logging_sets_subsystem_levels() -> None:
    configure_logging(Config(log_level="WARNING", client_log_level="DEBUG"))
    assert get_logger("telegram.client").level == logging.DEBUG
    assert get_logger("telegram.driver").level == logging.WARNING
    assert get_logger("telegram.options").level == logging.WARNING
