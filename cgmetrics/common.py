"""Shared cgroup value types and parsers for single values, key/value lines and pressure files."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

_UINT64_MAX = 2**64 - 1
_UNSIGNED_RE = re.compile(r"[0-9]+")
_NEGATIVE_RE = re.compile(r"-[0-9]+")
_PRESSURE_RE = re.compile(
    r"\s*(\S+)\s*avg10=(\S+)\s*avg60=(\S+)\s*avg300=(\S+)\s*total=([0-9]+)"
)

PathLike = Union[str, "os.PathLike[str]"]


class InvalidFormatError(ValueError):
    """A line does not hold a well-formed key/value pair."""

    def __init__(self, message: str = "error invalid key/value format") -> None:
        super().__init__(message)


@dataclass
class CPUUsage:
    """CPU time in nanoseconds, with percentages filled in from a previous sample."""

    ns: int = 0
    pct: Optional[float] = None
    norm_pct: Optional[float] = None


@dataclass
class Pressure:
    """Pressure stall averages over 10, 60 and 300 seconds plus total stall time in microseconds."""

    ten: float = 0.0
    sixty: float = 0.0
    three_hundred: float = 0.0
    total: Optional[int] = None

    def is_zero(self) -> bool:
        """Pressure is all or nothing: without a total there are no pressure metrics."""
        return self.total is None


def get_pressure(path: PathLike) -> dict[str, Pressure]:
    """Read a ``*.pressure`` file into a mapping of stall kind ("some", "full") to Pressure.

    Errors opening the file propagate unchanged; malformed lines raise ValueError.
    """
    text = Path(path).read_text()
    pressure: dict[str, Pressure] = {}
    for line in text.splitlines():
        match = _PRESSURE_RE.match(line)
        if match is None:
            raise ValueError(f"error scanning file: {path}: malformed line {line!r}")
        kind, ten, sixty, three_hundred, total = match.groups()
        try:
            pressure[kind] = Pressure(
                ten=float(ten),
                sixty=float(sixty),
                three_hundred=float(three_hundred),
                total=int(total),
            )
        except ValueError as exc:
            raise ValueError(f"error scanning file: {path}: {exc}") from exc
    return pressure


def parse_uint(value: Union[bytes, str]) -> int:
    """Parse an unsigned 64-bit integer, ignoring surrounding whitespace.

    Negative values are reported as 0. Anything else that is not a valid
    unsigned integer raises ValueError.
    """
    text = value.decode() if isinstance(value, bytes) else value
    text = text.strip()
    if _UNSIGNED_RE.fullmatch(text):
        number = int(text)
        if number <= _UINT64_MAX:
            return number
        raise ValueError(f"value out of range: {text!r}")
    if _NEGATIVE_RE.fullmatch(text) and int(text) < 0:
        return 0
    raise ValueError(f"invalid unsigned integer: {text!r}")


def parse_uint_from_file(*args: PathLike) -> int:
    """Read a single unsigned integer from the file at the joined path; a missing file gives 0."""
    try:
        content = Path(*args).read_bytes()
    except FileNotFoundError:
        return 0
    return parse_uint(content)


def parse_cgroup_param_key_value(text: str) -> tuple[str, int]:
    """Split a ``key value`` line into its key and unsigned value."""
    parts = text.split()
    if len(parts) != 2:
        raise InvalidFormatError()
    key, raw = parts
    try:
        value = parse_uint(raw)
    except ValueError as exc:
        raise ValueError(f"unable to convert param value ({raw!r}) to uint64: {exc}") from exc
    return key, value