"""Limits and throttling statistics from the cgroups v1 "cpu" subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..common import PathLike, parse_cgroup_param_key_value, parse_uint_from_file


@dataclass
class CFS:
    """Completely fair scheduler tunables."""

    period_us: int = 0
    quota_us: int = 0
    shares: int = 0


@dataclass
class RT:
    """Real-time scheduler tunables."""

    period_us: int = 0
    runtime_us: int = 0


@dataclass
class ThrottledField:
    """Time and number of periods during which the cgroup was throttled."""

    us: int = 0
    periods: int = 0


@dataclass
class CPUStats:
    """Throttling statistics from ``cpu.stat``."""

    periods: int = 0
    throttled: ThrottledField = field(default_factory=ThrottledField)


@dataclass
class CPUSubsystem:
    """Metrics and limits of the v1 "cpu" subsystem for one cgroup."""

    id: str = ""
    path: str = ""
    cfs: CFS = field(default_factory=CFS)
    rt: RT = field(default_factory=RT)
    stats: CPUStats = field(default_factory=CPUStats)

    def get(self, path: PathLike) -> None:
        """Read all cpu subsystem values from the cgroup directory at path."""
        self.read_cfs(path)
        self.read_rt(path)
        self.read_stats(path)

    def read_cfs(self, path: PathLike) -> None:
        """Read the CFS period, quota and shares."""
        self.cfs.period_us = parse_uint_from_file(path, "cpu.cfs_period_us")
        self.cfs.quota_us = parse_uint_from_file(path, "cpu.cfs_quota_us")
        self.cfs.shares = parse_uint_from_file(path, "cpu.shares")

    def read_rt(self, path: PathLike) -> None:
        """Read the real-time period and runtime."""
        self.rt.period_us = parse_uint_from_file(path, "cpu.rt_period_us")
        self.rt.runtime_us = parse_uint_from_file(path, "cpu.rt_runtime_us")

    def read_stats(self, path: PathLike) -> None:
        """Read ``cpu.stat``; a missing file leaves the stats untouched."""
        try:
            text = Path(path, "cpu.stat").read_text()
        except FileNotFoundError:
            return
        for line in text.splitlines():
            key, value = parse_cgroup_param_key_value(line)
            if key == "nr_periods":
                self.stats.periods = value
            elif key == "nr_throttled":
                self.stats.throttled.periods = value
            elif key == "throttled_time":
                self.stats.throttled.us = value