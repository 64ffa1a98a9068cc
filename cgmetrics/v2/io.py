"""Per-device I/O counters and pressure from the cgroups v2 "io" controller."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..common import PathLike, Pressure, get_pressure
from .devices import fetch_device_name

_UINT64_MAX = 2**64 - 1
_DEVICE_RE = re.compile(r"([0-9]+):([0-9]+)")
_COUNTER_RE = re.compile(r"[0-9]+")

# io.stat counter name -> (IOStat attribute, IOMetric attribute)
_COUNTERS = {
    "rbytes": ("read", "bytes"),
    "wbytes": ("write", "bytes"),
    "rios": ("read", "ios"),
    "wios": ("write", "ios"),
    "dbytes": ("discarded", "bytes"),
    "dios": ("discarded", "ios"),
}


@dataclass(frozen=True)
class IOMetric:
    """Bytes transferred and number of I/O operations."""

    bytes: int = 0
    ios: int = 0


@dataclass(frozen=True)
class IOStat:
    """Read, write and discard counters for one device."""

    read: IOMetric = field(default_factory=IOMetric)
    write: IOMetric = field(default_factory=IOMetric)
    discarded: IOMetric = field(default_factory=IOMetric)


def _parse_uint64(text: str, what: str) -> int:
    if not _COUNTER_RE.fullmatch(text):
        raise ValueError(f"error parsing {what} {text!r}: invalid syntax")
    value = int(text)
    if value > _UINT64_MAX:
        raise ValueError(f"error parsing {what} {text!r}: value out of range")
    return value


def _device_label(component: str, resolve_dev_ids: bool) -> str:
    match = _DEVICE_RE.match(component)
    if match is None:
        raise ValueError(f"could not read device ID: {component}")
    major = _parse_uint64(match.group(1), "device major")
    minor = _parse_uint64(match.group(2), "device minor")
    if resolve_dev_ids:
        try:
            name = fetch_device_name(major, minor)
        except OSError:
            name = None
        if name is not None:
            return name
    return component


def parse_stat_line(line: str, resolve_dev_ids: bool) -> tuple[list[str], Optional[IOStat]]:
    """Parse one ``io.stat`` line into its device labels and counters.

    Several devices may share one line of counters. A line that carries no
    counters gives None in place of the IOStat. Devices are labelled by their
    ``major:minor`` pair unless ``resolve_dev_ids`` is set and a name is found.
    """
    devices: list[str] = []
    values: dict[str, dict[str, int]] = {
        "read": {"bytes": 0, "ios": 0},
        "write": {"bytes": 0, "ios": 0},
        "discarded": {"bytes": 0, "ios": 0},
    }
    found_metrics = False
    for component in line.split(" "):
        if ":" in component:
            devices.append(_device_label(component, resolve_dev_ids))
        elif "=" in component:
            found_metrics = True
            name, raw = component.split("=")[:2]
            counter = _parse_uint64(raw, "counter")
            target = _COUNTERS.get(name)
            if target is not None:
                kind, unit = target
                values[kind][unit] = counter
    if not found_metrics:
        return devices, None
    stat = IOStat(
        read=IOMetric(**values["read"]),
        write=IOMetric(**values["write"]),
        discarded=IOMetric(**values["discarded"]),
    )
    return devices, stat


def read_io_stats(path: PathLike, resolve_dev_ids: bool) -> dict[str, IOStat]:
    """Read ``io.stat`` from the cgroup directory into a mapping of device to counters."""
    text = Path(path, "io.stat").read_text()
    stats: dict[str, IOStat] = {}
    for line in text.splitlines():
        try:
            devices, metrics = parse_stat_line(line, resolve_dev_ids)
        except ValueError as exc:
            raise ValueError(f"error parsing line in file: {exc}") from exc
        if metrics is None:
            continue
        for device in devices:
            stats[device] = metrics
    return stats


@dataclass
class IOSubsystem:
    """The v2 "io" controller, successor of the v1 "blkio" subsystem."""

    id: str = ""
    path: str = ""
    stats: dict[str, IOStat] = field(default_factory=dict)
    pressure: dict[str, Pressure] = field(default_factory=dict)

    def get(self, path: PathLike, resolve_dev_ids: bool) -> None:
        """Read I/O counters and, where the system provides them, pressure stats."""
        self.stats = read_io_stats(path, resolve_dev_ids)
        pressure_file = Path(path, "io.pressure")
        if not pressure_file.exists():
            return
        self.pressure = get_pressure(pressure_file)