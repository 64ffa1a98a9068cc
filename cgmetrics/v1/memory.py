"""Memory usage, limits and statistics from the cgroups v1 "memory" subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..common import PathLike, parse_cgroup_param_key_value, parse_uint_from_file

# memory.stat key -> MemoryStat attribute
_STAT_FIELDS = {
    "cache": "cache",
    "rss": "rss",
    "rss_huge": "rss_huge",
    "mapped_file": "mapped_file",
    "pgpgin": "pages_in",
    "pgpgout": "pages_out",
    "pgfault": "page_faults",
    "pgmajfault": "major_page_faults",
    "swap": "swap",
    "active_anon": "active_anon",
    "inactive_anon": "inactive_anon",
    "active_file": "active_file",
    "inactive_file": "inactive_file",
    "unevictable": "unevictable",
    "hierarchical_memory_limit": "hierarchical_memory_limit",
    "hierarchical_memsw_limit": "hierarchical_memsw_limit",
}


@dataclass
class MemSubsystemUsage:
    """Current and peak usage in bytes."""

    bytes: int = 0
    max: int = 0


@dataclass
class MemoryData:
    """Usage, limit and failure count of one memory counter family."""

    usage: MemSubsystemUsage = field(default_factory=MemSubsystemUsage)
    limit: int = 0
    failures: int = 0


@dataclass
class MemoryStat:
    """Statistics and accounting information from ``memory.stat``."""

    cache: int = 0
    rss: int = 0
    rss_huge: int = 0
    mapped_file: int = 0
    pages_in: int = 0
    pages_out: int = 0
    page_faults: int = 0
    major_page_faults: int = 0
    swap: int = 0
    active_anon: int = 0
    inactive_anon: int = 0
    active_file: int = 0
    inactive_file: int = 0
    unevictable: int = 0
    hierarchical_memory_limit: int = 0
    hierarchical_memsw_limit: int = 0


def read_memory_data(path: PathLike, prefix: str) -> MemoryData:
    """Read the usage, peak, limit and failure files that share the given prefix."""
    files = {
        "usage_in_bytes": f"{prefix}.usage_in_bytes",
        "max_usage_in_bytes": f"{prefix}.max_usage_in_bytes",
        "limit_in_bytes": f"{prefix}.limit_in_bytes",
        "failcnt": f"{prefix}.failcnt",
    }
    values = {}
    for key, name in files.items():
        try:
            values[key] = parse_uint_from_file(path, name)
        except ValueError as exc:
            raise ValueError(f"error fetching {key}: {exc}") from exc
    return MemoryData(
        usage=MemSubsystemUsage(bytes=values["usage_in_bytes"], max=values["max_usage_in_bytes"]),
        limit=values["limit_in_bytes"],
        failures=values["failcnt"],
    )


@dataclass
class MemorySubsystem:
    """Metrics and limits of the v1 "memory" subsystem for one cgroup."""

    id: str = ""
    path: str = ""
    mem: MemoryData = field(default_factory=MemoryData)
    mem_swap: MemoryData = field(default_factory=MemoryData)
    kernel: MemoryData = field(default_factory=MemoryData)
    kernel_tcp: MemoryData = field(default_factory=MemoryData)
    stats: MemoryStat = field(default_factory=MemoryStat)

    def get(self, path: PathLike) -> None:
        """Read all memory subsystem values from the cgroup directory at path."""
        self.mem = read_memory_data(path, "memory")
        self.mem_swap = read_memory_data(path, "memory.memsw")
        self.kernel = read_memory_data(path, "memory.kmem")
        self.kernel_tcp = read_memory_data(path, "memory.kmem.tcp")
        self.read_stats(path)

    def read_stats(self, path: PathLike) -> None:
        """Read ``memory.stat``; a missing file leaves the stats untouched."""
        try:
            text = Path(path, "memory.stat").read_text()
        except FileNotFoundError:
            return
        for line in text.splitlines():
            key, value = parse_cgroup_param_key_value(line)
            attribute = _STAT_FIELDS.get(key)
            if attribute is not None:
                setattr(self.stats, attribute, value)