"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_REGISTRY = CollectorRegistry()

LOG_LINES = Counter(
    "telegram_log_lines_total",
    "Log lines read from container streams",
    ["result"],
    registry=_REGISTRY,
)
MESSAGES_SENT = Counter(
    "telegram_messages_total",
    "Telegram sendMessage outcomes",
    ["result"],
    registry=_REGISTRY,
)
SEND_DURATION = Histogram(
    "telegram_send_duration_seconds",
    "Time to deliver a message including retries",
    ["result"],
    registry=_REGISTRY,
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
)
DROPPED_MESSAGES = Counter(
    "telegram_dropped_messages_total",
    "Messages discarded before delivery",
    ["reason"],
    registry=_REGISTRY,
)
ACTIVE_LOGGERS = Gauge(
    "telegram_active_loggers",
    "Container log streams currently forwarded",
    registry=_REGISTRY,
)


def latest_metrics() -> bytes:
    """Render the latest metrics payload for scraping."""

    return generate_latest(_REGISTRY)


def record_log_line(result: str) -> None:
    LOG_LINES.labels(result=result).inc()


def record_send_result(result: str, duration_seconds: float) -> None:
    """Record the outcome and duration of one message delivery."""

    MESSAGES_SENT.labels(result=result).inc()
    SEND_DURATION.labels(result=result).observe(duration_seconds)


def record_dropped_message(reason: str) -> None:
    DROPPED_MESSAGES.labels(reason=reason).inc()


def set_active_loggers(count: int) -> None:
    ACTIVE_LOGGERS.set(count)


METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST
