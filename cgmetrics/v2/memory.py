"""Memory usage, limits, events and statistics from the cgroups v2 "memory" controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..common import PathLike, parse_cgroup_param_key_value, parse_uint, parse_uint_from_file

# memory.stat key -> MemoryStat attribute
_STAT_FIELDS = {
    "anon": "anon",
    "file": "file",
    "kernel_stack": "kernel_stack",
    "pagetables": "page_tables",
    "percpu": "per_cpu",
    "sock": "sock",
    "shmem": "shmem",
    "file_mapped": "file_mapped",
    "file_dirty": "file_dirty",
    "file_writeback": "file_writeback",
    "swapcached": "swap_cached",
    "anon_thp": "anon_thp",
    "file_thp": "file_thp",
    "shmem_thp": "shmem_thp",
    "inactive_anon": "inactive_anon",
    "active_anon": "active_anon",
    "inactive_file": "inactive_file",
    "active_file": "active_file",
    "unevictable": "unevictable",
    "slab_reclaimable": "slab_reclaimable",
    "slab_unreclaimable": "slab_unreclaimable",
    "slab": "slab",
    "workingset_refault_anon": "workingset_refault_anon",
    "workingset_refault_file": "workingset_refault_file",
    "workingset_activate_anon": "workingset_activate_anon",
    "workingset_activate_file": "workingset_activate_file",
    "workingset_restore_anon": "workingset_restore_anon",
    "workingset_restore_file": "workingset_restore_file",
    "workingset_nodereclaim": "workingset_node_reclaim",
    "pgfault": "page_faults",
    "pgmajfault": "major_page_faults",
    "pgrefill": "page_refill",
    "pgscan": "page_scan",
    "pgsteal": "page_steal",
    "pgactivate": "page_activate",
    "pgdeactivate": "page_deactivate",
    "pglazyfree": "page_lazy_free",
    "pglazyfreed": "page_lazy_freed",
    "thp_fault_alloc": "thp_fault_alloc",
    "thp_collapse_alloc": "thp_collapse_alloc",
}

# *.events key -> Events attribute
_EVENT_FIELDS = {
    "low": "low",
    "high": "high",
    "max": "max",
    "oom": "oom",
    "oom_kill": "oom_kill",
    "fail": "fail",
}


@dataclass
class Events:
    """Counters from a ``*.events`` file of the memory controller."""

    low: Optional[int] = None
    high: int = 0
    max: int = 0
    oom: Optional[int] = None
    oom_kill: Optional[int] = None
    fail: Optional[int] = None


@dataclass
class MemoryData:
    """Usage and limits of one memory counter family.

    ``high`` and ``max`` are None when the limit is set to "max" (disabled)
    or was not reported.
    """

    events: Events = field(default_factory=Events)
    usage: int = 0
    low: int = 0
    high: Optional[int] = None
    max: Optional[int] = None


@dataclass
class MemoryStat:
    """Detailed statistics from ``memory.stat``; sizes are in bytes, the rest are counts."""

    anon: int = 0
    file: int = 0
    kernel_stack: int = 0
    page_tables: int = 0
    per_cpu: int = 0
    sock: int = 0
    shmem: int = 0
    file_mapped: int = 0
    file_dirty: int = 0
    file_writeback: int = 0
    swap_cached: int = 0
    anon_thp: int = 0
    file_thp: int = 0
    shmem_thp: int = 0
    inactive_anon: int = 0
    active_anon: int = 0
    inactive_file: int = 0
    active_file: int = 0
    unevictable: int = 0
    slab_reclaimable: int = 0
    slab_unreclaimable: int = 0
    slab: int = 0
    workingset_refault_anon: int = 0
    workingset_refault_file: int = 0
    workingset_activate_anon: int = 0
    workingset_activate_file: int = 0
    workingset_restore_anon: int = 0
    workingset_restore_file: int = 0
    workingset_node_reclaim: int = 0
    page_faults: int = 0
    major_page_faults: int = 0
    page_refill: int = 0
    page_scan: int = 0
    page_steal: int = 0
    page_activate: int = 0
    page_deactivate: int = 0
    page_lazy_free: int = 0
    page_lazy_freed: int = 0
    thp_fault_alloc: int = 0
    thp_collapse_alloc: int = 0


def max_or_value(path: PathLike, name: str) -> Optional[int]:
    """Read a limit file that may hold "max", meaning no limit; that gives None."""
    raw = Path(path, name).read_bytes()
    if raw.strip() == b"max":
        return None
    try:
        return parse_uint(raw)
    except ValueError as exc:
        raise ValueError(f"error parsing value in {name}: {exc}") from exc


def read_events(path: PathLike, name: str) -> Events:
    """Read an events file such as ``memory.events``."""
    text = Path(path, name).read_text()
    events = Events()
    for line in text.splitlines():
        try:
            key, value = parse_cgroup_param_key_value(line)
        except ValueError as exc:
            raise ValueError(f"error parsing key from events: {exc}") from exc
        attribute = _EVENT_FIELDS.get(key)
        if attribute is not None:
            setattr(events, attribute, value)
    return events


def read_memory_data(path: PathLike, name: str) -> MemoryData:
    """Read the low, high, max, current and events files that share the given name.

    Root cgroups have none of these files; when ``<name>.high`` is missing an
    empty MemoryData is returned.
    """
    if not Path(path, f"{name}.high").exists():
        return MemoryData()
    try:
        low = parse_uint_from_file(path, f"{name}.low")
    except ValueError as exc:
        raise ValueError(f"error reading {name}.low file: {exc}") from exc
    high = max_or_value(path, f"{name}.high")
    maximum = max_or_value(path, f"{name}.max")
    try:
        current = parse_uint_from_file(path, f"{name}.current")
    except ValueError as exc:
        raise ValueError(f"error reading {name}.current file: {exc}") from exc
    events = read_events(path, f"{name}.events")
    return MemoryData(events=events, usage=current, low=low, high=high, max=maximum)


def read_memory_stat(path: PathLike) -> MemoryStat:
    """Read ``memory.stat`` into a MemoryStat; unknown keys are ignored."""
    text = Path(path, "memory.stat").read_text()
    stats = MemoryStat()
    for line in text.splitlines():
        parts = line.split(" ", 1)
        if len(parts) != 2:
            continue
        key, raw = parts
        try:
            value = parse_uint(raw)
        except ValueError as exc:
            raise ValueError(f"error parsing value {raw!r}: {exc}") from exc
        attribute = _STAT_FIELDS.get(key)
        if attribute is not None:
            setattr(stats, attribute, value)
    return stats


@dataclass
class MemorySubsystem:
    """Metrics and limits of the v2 "memory" controller for one cgroup."""

    id: str = ""
    path: str = ""
    mem: MemoryData = field(default_factory=MemoryData)
    mem_swap: MemoryData = field(default_factory=MemoryData)
    stats: MemoryStat = field(default_factory=MemoryStat)

    def get(self, path: PathLike) -> None:
        """Read all memory controller values from the cgroup directory at path."""
        self.mem = read_memory_data(path, "memory")
        self.mem_swap = read_memory_data(path, "memory.swap")
        self.stats = read_memory_stat(path)