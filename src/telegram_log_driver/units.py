"""Parsers for the scalar value formats accepted in log options."""

from __future__ import annotations

import math
import re
from datetime import timedelta

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_TERM = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION = re.compile(
    r"(?P<sign>[-+]?)(?P<terms>(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+)"
)

_SIZE = re.compile(r"(?P<number>\d+(?:\.\d+)?) ?(?P<prefix>[kKmMgGtTpP])?[iI]?[bB]?")
_SIZE_MULTIPLIERS = {
    "": 1,
    "k": 1024,
    "m": 1024**2,
    "g": 1024**3,
    "t": 1024**4,
    "p": 1024**5,
}

_INT = re.compile(r"[-+]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

# Durations are int64 nanoseconds in the daemon.
_MAX_DURATION_SECONDS = _INT64_MAX / 1e9

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"20s"``, ``"1m30s"`` or ``"250ms"``.

    Every term needs a unit; the bare string ``"0"`` is the only unitless
    value accepted. Results are rounded to the nearest microsecond.
    """

    if value in {"0", "+0", "-0"}:
        return timedelta(0)
    match = _DURATION.fullmatch(value)
    if not match:
        raise ValueError(f"invalid duration {value!r}")
    seconds = 0.0
    for number, unit in _DURATION_TERM.findall(match.group("terms")):
        seconds += float(number) * _DURATION_UNITS[unit]
    if seconds > _MAX_DURATION_SECONDS:
        raise ValueError(f"invalid duration {value!r}: out of range")
    if match.group("sign") == "-":
        seconds = -seconds
    return timedelta(seconds=seconds)


def parse_bytes(value: str) -> int:
    """Parse a human readable size into bytes using binary multipliers.

    ``"100MB"``, ``"100m"`` and ``"100MiB"`` all mean ``100 * 1024 ** 2``.
    """

    match = _SIZE.fullmatch(value)
    if not match:
        raise ValueError(f"invalid size {value!r}")
    prefix = (match.group("prefix") or "").lower()
    size = float(match.group("number")) * _SIZE_MULTIPLIERS[prefix]
    if not math.isfinite(size) or size > _INT64_MAX:
        raise ValueError(f"invalid size {value!r}: out of range")
    return int(size)


def parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def parse_int(value: str) -> int:
    """Parse a base-10 integer without the leniency of ``int()``."""

    if not _INT.fullmatch(value):
        raise ValueError(f"invalid integer {value!r}")
    number = int(value)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"integer {value!r} out of range")
    return number
