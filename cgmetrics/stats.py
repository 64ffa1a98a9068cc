"""Per-cgroup statistics gathered from the v1 subsystems or the v2 controllers."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from .mounts import ControllerPath
from .v1.cpu import CPUSubsystem as V1CPUSubsystem
from .v1.cpuacct import CPUAccountingSubsystem
from .v1.memory import MemorySubsystem as V1MemorySubsystem
from .v2.cpu import CPUSubsystem as V2CPUSubsystem
from .v2.io import IOSubsystem
from .v2.memory import MemorySubsystem as V2MemorySubsystem


class CgroupsVersion(enum.IntEnum):
    """Version of the cgroups hierarchy a process is attached to."""

    V1 = 1
    V2 = 2


def _base(path: str) -> str:
    """Last element of a path: "." for an empty path, "/" for the root."""
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


@dataclass
class StatsV1:
    """Metrics and limits of a process's cgroups v1 subsystems."""

    id: str = ""
    path: str = ""
    cpu: Optional[V1CPUSubsystem] = None
    cpu_accounting: Optional[CPUAccountingSubsystem] = None
    memory: Optional[V1MemorySubsystem] = None
    version: CgroupsVersion = CgroupsVersion.V1

    def cg_version(self) -> CgroupsVersion:
        """Always cgroups v1."""
        return CgroupsVersion.V1

    def add_controller(self, path: ControllerPath, name: str) -> None:
        """Read the named subsystem from path; unknown names are ignored."""
        subsystem: object
        if name == "cpu":
            subsystem = self.cpu = V1CPUSubsystem()
        elif name == "cpuacct":
            subsystem = self.cpu_accounting = CPUAccountingSubsystem()
        elif name == "memory":
            subsystem = self.memory = V1MemorySubsystem()
        else:
            return
        subsystem.get(path.full_path)
        subsystem.id = _base(path.controller_path)
        subsystem.path = path.controller_path


@dataclass
class StatsV2:
    """Metrics and limits of a process's cgroups v2 controllers."""

    id: str = ""
    path: str = ""
    cpu: Optional[V2CPUSubsystem] = None
    memory: Optional[V2MemorySubsystem] = None
    io: Optional[IOSubsystem] = None
    version: CgroupsVersion = CgroupsVersion.V2

    def cg_version(self) -> CgroupsVersion:
        """Always cgroups v2."""
        return CgroupsVersion.V2

    def add_controller(self, path: ControllerPath, name: str) -> None:
        """Read the named controller from path; unknown names are ignored."""
        subsystem: object
        if name == "cpu":
            subsystem = self.cpu = V2CPUSubsystem()
            subsystem.get(path.full_path)
        elif name == "memory":
            subsystem = self.memory = V2MemorySubsystem()
            subsystem.get(path.full_path)
        elif name == "io":
            subsystem = self.io = IOSubsystem()
            subsystem.get(path.full_path, True)
        else:
            return
        subsystem.id = _base(path.controller_path)
        subsystem.path = path.controller_path


def get_common_cgroup_metadata(mounts: Mapping[str, ControllerPath], ignore_root: bool) -> tuple[str, str]:
    """Return (path, id) shared by all controllers, or ("", "") when they differ.

    With ignore_root, v1 controllers at "/" do not take part.
    """
    common = ""
    for mount in mounts.values():
        if not mount.is_v2 and ignore_root and mount.controller_path == "/":
            continue
        if not common:
            common = mount.controller_path
        elif common != mount.controller_path:
            return "", ""
    return common, _base(common)