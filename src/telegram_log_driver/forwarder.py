"""Per-container pipeline from decoded log entries to Telegram messages."""

from __future__ import annotations

import asyncio
import contextlib
from typing import List, Optional

from .client import TelegramClient, TelegramError
from .formatter import MessageFormatter, split_message
from .logentry import LogEntry
from .logging import get_logger
from .metrics import record_dropped_message, record_log_line
from .options import ContainerDetails, LoggerConfig


class LogForwarder:
    """Filter, format, batch and deliver one container's log lines.

    ``handle`` never waits on the network: messages are queued and a worker
    task delivers them. The pending batch and the delivery queue are each
    capped at ``max_buffer_size`` bytes; messages beyond that are dropped.
    """

    def __init__(
        self,
        config: LoggerConfig,
        details: ContainerDetails,
        client: TelegramClient,
        *,
        formatter: Optional[MessageFormatter] = None,
    ) -> None:
        self.config = config
        self.details = details
        self.client = client
        self.logger = get_logger("telegram.forwarder")
        self._formatter = formatter or MessageFormatter(config.template, details, config.attrs)
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._queued_bytes = 0
        self._batch: List[str] = []
        self._batch_bytes = 0
        self._partial: List[bytes] = []
        self._worker: Optional[asyncio.Task[None]] = None
        self._flusher: Optional[asyncio.Task[None]] = None
        self._stopped = asyncio.Event()

    @property
    def pending_bytes(self) -> int:
        return self._queued_bytes + self._batch_bytes

    async def start(self) -> None:
        self._stopped.clear()
        self._worker = asyncio.create_task(self._deliver_loop())
        if self.config.batch_enabled:
            self._flusher = asyncio.create_task(self._flush_loop())
        self.logger.info(
            "Forwarder started",
            extra={
                "container_id": self.details.short_id,
                "container_name": self.details.name,
                "batch_enabled": self.config.batch_enabled,
            },
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Flush pending messages, wait for delivery and release the client."""

        self._stopped.set()
        if self._flusher:
            self._flusher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flusher
            self._flusher = None
        if self._partial:
            self._accept(b"".join(self._partial), None, "")
            self._partial.clear()
        self._flush_batch()
        if self._worker:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Timed out waiting for pending messages",
                    extra={"container_id": self.details.short_id, "pending": self._queue.qsize()},
                )
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        await self.client.aclose()
        self.logger.info("Forwarder stopped", extra={"container_id": self.details.short_id})

    async def handle(self, entry: LogEntry) -> None:
        if entry.partial and not entry.partial_last:
            self._partial.append(entry.line)
            return
        line = entry.line
        if self._partial:
            self._partial.append(line)
            line = b"".join(self._partial)
            self._partial.clear()
        self._accept(line, entry, entry.source)

    def _accept(self, raw: bytes, entry: Optional[LogEntry], source: str) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if not line.strip():
            record_log_line("empty")
            return
        if self.config.filter_regex is not None and not self.config.filter_regex.search(line):
            record_log_line("filtered")
            return
        record_log_line("forwarded")
        text = self._formatter.format(line, entry.timestamp if entry else None, source)
        if not self.config.batch_enabled:
            self._enqueue(text)
            return
        size = len(text.encode("utf-8"))
        if self._batch and self._batch_bytes + size + 1 > self.config.max_buffer_size:
            self._flush_batch()
        self._batch.append(text)
        self._batch_bytes += size + 1

    def _flush_batch(self) -> None:
        if not self._batch:
            return
        text = "\n".join(self._batch)
        self._batch.clear()
        self._batch_bytes = 0
        self._enqueue(text)

    def _enqueue(self, text: str) -> None:
        size = len(text.encode("utf-8"))
        if self._queued_bytes + size > self.config.max_buffer_size:
            record_dropped_message("buffer_full")
            self.logger.warning(
                "Delivery backlog full; dropping message",
                extra={
                    "container_id": self.details.short_id,
                    "size": size,
                    "queued_bytes": self._queued_bytes,
                },
            )
            return
        self._queued_bytes += size
        self._queue.put_nowait(text)

    async def _flush_loop(self) -> None:
        interval = self.config.batch_flush_interval.total_seconds()
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self._flush_batch()

    async def _deliver_loop(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                for chunk in split_message(text):
                    await self.client.send_message(chunk, self.config.message_thread_id)
            except TelegramError:
                record_dropped_message("delivery_failed")
                self.logger.exception(
                    "Failed to deliver message",
                    extra={"container_id": self.details.short_id},
                )
            except Exception:  # pragma: no cover - keeps the worker alive
                record_dropped_message("error")
                self.logger.exception(
                    "Unhandled delivery error",
                    extra={"container_id": self.details.short_id},
                )
            finally:
                self._queued_bytes -= len(text.encode("utf-8"))
                self._queue.task_done()
