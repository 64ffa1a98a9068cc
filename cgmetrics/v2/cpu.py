"""CPU pressure and usage counters from the cgroups v2 "cpu" controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..common import CPUUsage, PathLike, Pressure, get_pressure, parse_cgroup_param_key_value


@dataclass
class ThrottledField:
    """Throttled time and periods; only present when the controller is enabled."""

    us: Optional[int] = None
    periods: Optional[int] = None

    def is_zero(self) -> bool:
        """True when neither throttling value was reported."""
        return self.us is None and self.periods is None


@dataclass
class CPUStats:
    """Counters from ``cpu.stat``."""

    throttled: ThrottledField = field(default_factory=ThrottledField)
    periods: Optional[int] = None
    usage: CPUUsage = field(default_factory=CPUUsage)
    user: CPUUsage = field(default_factory=CPUUsage)
    system: CPUUsage = field(default_factory=CPUUsage)


def read_cpu_stats(path: PathLike) -> CPUStats:
    """Read ``cpu.stat`` from the cgroup directory; a missing file gives empty stats."""
    try:
        text = Path(path, "cpu.stat").read_text()
    except FileNotFoundError:
        return CPUStats()
    data = CPUStats()
    for line in text.splitlines():
        key, value = parse_cgroup_param_key_value(line)
        if key == "usage_usec":
            data.usage.ns = value
        elif key == "user_usec":
            data.user.ns = value
        elif key == "system_usec":
            data.system.ns = value
        elif key == "nr_periods":
            data.periods = value
        elif key == "nr_throttled":
            data.throttled.periods = value
        elif key == "throttled_usec":
            data.throttled.us = value
    return data


@dataclass
class CPUSubsystem:
    """The v2 "cpu" controller, which merges the v1 "cpu" and "cpuacct" subsystems."""

    id: str = ""
    path: str = ""
    pressure: dict[str, Pressure] = field(default_factory=dict)
    stats: CPUStats = field(default_factory=CPUStats)

    def get(self, path: PathLike) -> None:
        """Read pressure and usage counters.

        Systems without ``cpu.pressure`` report nothing at all for this controller.
        """
        try:
            self.pressure = get_pressure(Path(path, "cpu.pressure"))
        except FileNotFoundError:
            self.pressure = {}
            return
        self.stats = read_cpu_stats(path)