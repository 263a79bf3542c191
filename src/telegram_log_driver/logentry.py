"""Codec for the log stream the daemon writes to a plugin's FIFO.

Each frame is a 4-byte big-endian length followed by a protobuf-encoded
``LogEntry`` message (the daemon's ``logdriver.LogEntry`` schema).
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Optional

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

FRAME_HEADER = struct.Struct(">I")
DEFAULT_MAX_ENTRY_SIZE = 1_000_000

_PACKAGE = "telegram_log_driver.logdriver"


def _build_message_classes():
    fdp = descriptor_pb2.FieldDescriptorProto
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="telegram_log_driver/logentry.proto",
        package=_PACKAGE,
        syntax="proto3",
    )

    metadata = file_proto.message_type.add(name="PartialLogEntryMetadata")
    metadata.field.add(name="last", number=1, type=fdp.TYPE_BOOL, label=fdp.LABEL_OPTIONAL)
    metadata.field.add(name="id", number=2, type=fdp.TYPE_STRING, label=fdp.LABEL_OPTIONAL)
    metadata.field.add(name="ordinal", number=3, type=fdp.TYPE_INT32, label=fdp.LABEL_OPTIONAL)

    entry = file_proto.message_type.add(name="LogEntry")
    entry.field.add(name="source", number=1, type=fdp.TYPE_STRING, label=fdp.LABEL_OPTIONAL)
    entry.field.add(name="time_nano", number=2, type=fdp.TYPE_INT64, label=fdp.LABEL_OPTIONAL)
    entry.field.add(name="line", number=3, type=fdp.TYPE_BYTES, label=fdp.LABEL_OPTIONAL)
    entry.field.add(name="partial", number=4, type=fdp.TYPE_BOOL, label=fdp.LABEL_OPTIONAL)
    entry.field.add(
        name="partial_log_metadata",
        number=5,
        type=fdp.TYPE_MESSAGE,
        type_name=f".{_PACKAGE}.PartialLogEntryMetadata",
        label=fdp.LABEL_OPTIONAL,
    )

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{_PACKAGE}.LogEntry"))


LogEntryMessage = _build_message_classes()


class LogEntryError(Exception):
    """Raised when a frame cannot be read or decoded."""


@dataclass(frozen=True)
class LogEntry:
    """One decoded log record."""

    source: str = ""
    time_nano: int = 0
    line: bytes = b""
    partial: bool = False
    partial_id: str = ""
    partial_ordinal: int = 0
    partial_last: bool = False

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time_nano / 1e9, tz=timezone.utc)


def decode_entry(payload: bytes) -> LogEntry:
    message = LogEntryMessage()
    try:
        message.ParseFromString(payload)
    except DecodeError as exc:
        raise LogEntryError(f"invalid log entry: {exc}") from exc
    metadata = message.partial_log_metadata
    return LogEntry(
        source=message.source,
        time_nano=message.time_nano,
        line=message.line,
        partial=message.partial,
        partial_id=metadata.id,
        partial_ordinal=metadata.ordinal,
        partial_last=metadata.last,
    )


def encode_entry(entry: LogEntry) -> bytes:
    """Serialize ``entry`` as a length-prefixed frame."""

    message = LogEntryMessage(
        source=entry.source,
        time_nano=entry.time_nano,
        line=entry.line,
        partial=entry.partial,
    )
    if entry.partial_id or entry.partial_ordinal or entry.partial_last:
        message.partial_log_metadata.id = entry.partial_id
        message.partial_log_metadata.ordinal = entry.partial_ordinal
        message.partial_log_metadata.last = entry.partial_last
    payload = message.SerializeToString()
    return FRAME_HEADER.pack(len(payload)) + payload


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_entry(stream: BinaryIO, max_size: int = DEFAULT_MAX_ENTRY_SIZE) -> Optional[LogEntry]:
    """Read the next frame from ``stream``; ``None`` means a clean EOF."""

    header = _read_exact(stream, FRAME_HEADER.size)
    if not header:
        return None
    if len(header) < FRAME_HEADER.size:
        raise LogEntryError("truncated frame header")
    (length,) = FRAME_HEADER.unpack(header)
    if length > max_size:
        raise LogEntryError(f"frame of {length} bytes exceeds limit of {max_size}")
    payload = _read_exact(stream, length)
    if len(payload) < length:
        raise LogEntryError(f"truncated frame: expected {length} bytes, got {len(payload)}")
    return decode_entry(payload)
