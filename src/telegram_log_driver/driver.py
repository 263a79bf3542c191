"""Lifecycle of the log streams the daemon hands to the plugin."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import BinaryIO, Callable, Dict, List, Optional

from .backoff import BackoffPolicy
from .client import TelegramClient
from .config import Config
from .forwarder import LogForwarder
from .logentry import LogEntryError, read_entry
from .logging import get_logger
from .metrics import set_active_loggers
from .options import ClientConfig, ContainerDetails, parse_logger_config

ClientFactory = Callable[[ClientConfig, BackoffPolicy, bool], TelegramClient]
StreamOpener = Callable[[str], BinaryIO]


def _default_client_factory(config: ClientConfig, backoff: BackoffPolicy, dry_run: bool) -> TelegramClient:
    return TelegramClient(config, backoff, dry_run=dry_run)


def _open_fifo(path: str) -> BinaryIO:
    # Unbuffered so closing never waits on a read blocked in another thread.
    return open(path, "rb", buffering=0)


@dataclass
class _Stream:
    file: str
    details: ContainerDetails
    forwarder: LogForwarder
    reader: Optional["asyncio.Task[None]"] = None


class LogDriver:
    """Start and stop forwarding for container log FIFOs."""

    def __init__(
        self,
        config: Config,
        client_factory: ClientFactory = _default_client_factory,
        opener: StreamOpener = _open_fifo,
    ) -> None:
        self.config = config
        self.logger = get_logger("telegram.driver")
        self._client_factory = client_factory
        self._opener = opener
        self._backoff = BackoffPolicy(
            base=config.backoff_base,
            factor=config.backoff_factor,
            maximum=config.backoff_max,
        )
        self._streams: Dict[str, _Stream] = {}
        self._lock = asyncio.Lock()

    def active_files(self) -> List[str]:
        return sorted(self._streams)

    async def start_logging(self, file: str, details: ContainerDetails) -> None:
        """Begin forwarding the FIFO at ``file``.

        Option errors from :func:`parse_logger_config` are raised unchanged so
        the daemon refuses to start the container.
        """

        logger_config = parse_logger_config(details)
        async with self._lock:
            if file in self._streams:
                raise ValueError(f"logger for {file!r} already exists")
            client = self._client_factory(logger_config.client, self._backoff, self.config.dry_run)
            forwarder = LogForwarder(logger_config, details, client)
            await forwarder.start()
            stream = _Stream(file=file, details=details, forwarder=forwarder)
            stream.reader = asyncio.create_task(self._consume(stream))
            self._streams[file] = stream
            set_active_loggers(len(self._streams))
        self.logger.info(
            "Started logging",
            extra={
                "file": file,
                "container_id": details.short_id,
                "container_name": details.name,
                "options": logger_config.logging_dict(),
            },
        )

    async def stop_logging(self, file: str) -> None:
        async with self._lock:
            stream = self._streams.pop(file, None)
            set_active_loggers(len(self._streams))
        if stream is None:
            self.logger.debug("StopLogging for unknown stream", extra={"file": file})
            return
        await self._stop_stream(stream)
        self.logger.info(
            "Stopped logging",
            extra={"file": file, "container_id": stream.details.short_id},
        )

    async def stop_all(self) -> None:
        async with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
            set_active_loggers(0)
        for stream in streams:
            await self._stop_stream(stream)

    async def _stop_stream(self, stream: _Stream) -> None:
        if stream.reader is not None and not stream.reader.done():
            stream.reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stream.reader
        await stream.forwarder.stop(timeout=self.config.shutdown_timeout)

    async def _consume(self, stream: _Stream) -> None:
        container_id = stream.details.short_id
        try:
            handle = await asyncio.to_thread(self._opener, stream.file)
        except OSError:
            self.logger.exception(
                "Failed to open log stream",
                extra={"file": stream.file, "container_id": container_id},
            )
            return
        try:
            while True:
                entry = await asyncio.to_thread(read_entry, handle, self.config.max_entry_size)
                if entry is None:
                    self.logger.debug(
                        "Log stream closed",
                        extra={"file": stream.file, "container_id": container_id},
                    )
                    return
                await stream.forwarder.handle(entry)
        except LogEntryError:
            self.logger.exception(
                "Corrupt log stream; stopping reader",
                extra={"file": stream.file, "container_id": container_id},
            )
        except OSError:
            self.logger.exception(
                "Error reading log stream",
                extra={"file": stream.file, "container_id": container_id},
            )
        finally:
            handle.close()
