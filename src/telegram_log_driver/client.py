"""Telegram Bot API client used to deliver formatted log messages."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from .backoff import BackoffPolicy
from .logging import get_logger
from .metrics import record_send_result
from .options import ClientConfig


class TelegramError(Exception):
    """Base class for delivery failures."""


class TelegramAPIError(TelegramError):
    """The Bot API rejected a request."""

    def __init__(self, status_code: int, description: str, retry_after: Optional[float] = None) -> None:
        super().__init__(f"Bot API error {status_code}: {description}")
        self.status_code = status_code
        self.description = description
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class TelegramDeliveryError(TelegramError):
    """A message could not be delivered within the configured retries."""


def _api_error(response: httpx.Response) -> TelegramAPIError:
    description = response.text
    retry_after: Optional[float] = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        description = str(body.get("description") or description)
        parameters = body.get("parameters") or {}
        if isinstance(parameters, dict) and "retry_after" in parameters:
            try:
                retry_after = float(parameters["retry_after"])
            except (TypeError, ValueError):
                retry_after = None
    return TelegramAPIError(response.status_code, description, retry_after)


class TelegramClient:
    """Send messages to one chat with retries and backoff."""

    def __init__(
        self,
        config: ClientConfig,
        backoff: BackoffPolicy,
        *,
        dry_run: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.logger = get_logger("telegram.client")
        self._backoff = backoff
        self._dry_run = dry_run
        self._http = httpx.AsyncClient(
            timeout=config.timeout.total_seconds(),
            transport=transport,
        )

    async def __aenter__(self) -> "TelegramClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/bot{self.config.token}/sendMessage"

    async def aclose(self) -> None:
        await self._http.aclose()

    async def send_message(self, text: str, message_thread_id: int = 0) -> None:
        """Deliver ``text`` to the configured chat.

        Transport errors, 5xx and 429 responses are retried up to
        ``config.retries`` times; other API errors fail immediately.
        """

        payload: Dict[str, Any] = {"chat_id": self.config.chat_id, "text": text}
        if message_thread_id:
            payload["message_thread_id"] = message_thread_id

        if self._dry_run:
            self.logger.info(
                "Dry-run: would send message",
                extra={"chat_id": self.config.chat_id, "length": len(text)},
            )
            return

        started = time.perf_counter()
        attempts = self.config.retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            delay: Optional[float] = None
            try:
                await self._post(payload)
            except TelegramAPIError as exc:
                if not exc.retryable:
                    record_send_result("rejected", time.perf_counter() - started)
                    raise
                last_error = exc
                delay = exc.retry_after
            except httpx.HTTPError as exc:
                last_error = exc
            else:
                record_send_result("success", time.perf_counter() - started)
                return

            if attempt == attempts:
                break
            if delay is None:
                delay = self._backoff.delay(attempt)
            self.logger.warning(
                "Telegram send failed; retrying",
                extra={
                    "attempt": attempt,
                    "attempts": attempts,
                    "delay": round(delay, 3),
                    "error": str(last_error),
                },
            )
            if delay > 0:
                await asyncio.sleep(delay)

        record_send_result("failure", time.perf_counter() - started)
        self.logger.error(
            "Exhausted retries sending message",
            extra={"chat_id": self.config.chat_id, "attempts": attempts},
        )
        raise TelegramDeliveryError(
            f"failed to send message after {attempts} attempt(s): {last_error}"
        ) from last_error

    async def _post(self, payload: Dict[str, Any]) -> None:
        response = await self._http.post(self.endpoint, json=payload)
        if response.status_code >= 400:
            raise _api_error(response)
        self.logger.debug(
            "Message delivered",
            extra={"chat_id": self.config.chat_id, "status": response.status_code},
        )
