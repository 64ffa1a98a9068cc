"""CPU accounting metrics from the cgroups v1 "cpuacct" subsystem."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ..common import CPUUsage, PathLike, parse_cgroup_param_key_value, parse_uint, parse_uint_from_file

_NANOS_PER_SECOND = 1_000_000_000
_UINT64_MASK = 2**64 - 1


def _clock_ticks() -> int:
    try:
        ticks = os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return 100
    return ticks if ticks > 0 else 100


CLOCK_TICKS = _clock_ticks()


def convert_jiffies_to_nanos(jiffies: int) -> int:
    """Convert clock ticks to nanoseconds."""
    return ((jiffies * _NANOS_PER_SECOND) & _UINT64_MASK) // CLOCK_TICKS


@dataclass
class CPUAccountingStats:
    """User and system CPU time of the cgroup's tasks."""

    user: CPUUsage = field(default_factory=CPUUsage)
    system: CPUUsage = field(default_factory=CPUUsage)


@dataclass
class CPUAccountingSubsystem:
    """Metrics of the v1 "cpuacct" subsystem for one cgroup.

    Percentages are not read from the cgroup; they are derived from two samples.
    """

    id: str = ""
    path: str = ""
    total: CPUUsage = field(default_factory=CPUUsage)
    usage_per_cpu: dict[str, int] = field(default_factory=dict)
    stats: CPUAccountingStats = field(default_factory=CPUAccountingStats)

    def get(self, path: PathLike) -> None:
        """Read all cpuacct values from the cgroup directory at path."""
        self.usage_per_cpu = {}
        self.read_stat(path)
        self.read_usage(path)
        self.read_usage_per_cpu(path)

    def read_stat(self, path: PathLike) -> None:
        """Read user and system time from ``cpuacct.stat``, converting ticks to nanoseconds."""
        try:
            text = Path(path, "cpuacct.stat").read_text()
        except FileNotFoundError:
            return
        for line in text.splitlines():
            key, value = parse_cgroup_param_key_value(line)
            if key == "user":
                self.stats.user.ns = convert_jiffies_to_nanos(value)
            elif key == "system":
                self.stats.system.ns = convert_jiffies_to_nanos(value)

    def read_usage(self, path: PathLike) -> None:
        """Read total CPU time in nanoseconds from ``cpuacct.usage``."""
        self.total.ns = parse_uint_from_file(path, "cpuacct.usage")

    def read_usage_per_cpu(self, path: PathLike) -> None:
        """Read per-CPU usage; CPUs are numbered from 1."""
        try:
            content = Path(path, "cpuacct.usage_percpu").read_bytes()
        except FileNotFoundError:
            return
        self.usage_per_cpu = {
            str(number): parse_uint(usage)
            for number, usage in enumerate(content.split(), start=1)
        }