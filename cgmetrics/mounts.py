"""Discover cgroup subsystems, their mountpoints and the cgroup paths of processes.

A cgroup is a collection of processes that are bound to a set of limits; a
subsystem is a kernel component that modifies the behaviour of the processes
in a cgroup.
"""

from __future__ import annotations

import logging
import os
import posixpath
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from .container import guess_container_cgroup_path, is_cgroup_ns_private

log = logging.getLogger(__name__)


class CgroupsMissingError(Exception):
    """``/proc/cgroups`` was not found: cgroups are unsupported or the rootfs path is wrong."""

    def __init__(self, message: str = "cgroups not found or unsupported by OS") -> None:
        super().__init__(message)


def _clean_join(*parts: str) -> str:
    """Join non-empty parts and clean the result; all-empty parts give an empty string."""
    kept = [part for part in parts if part]
    if not kept:
        return ""
    cleaned = posixpath.normpath("/".join(kept))
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


@dataclass(frozen=True)
class HostFS:
    """Location of the host's root filesystem, e.g. ``/hostfs`` inside a container."""

    root: str = "/"

    def resolve_hostfs(self, path: str) -> str:
        """Return path as seen under the host root."""
        return _clean_join(self.root, path)

    def is_set(self) -> bool:
        """True when an alternate root other than ``/`` is in use."""
        return self.root not in ("", "/")


@dataclass
class Mountinfo:
    """The parts of a ``/proc/[pid]/mountinfo`` line that matter for cgroups."""

    mountpoint: str
    filesystem_type: str
    super_options: list[str]


@dataclass
class Mountpoints:
    """Mountpoints of v1 subsystems and of the unified v2 hierarchy."""

    v1_mounts: dict[str, str] = field(default_factory=dict)
    v2_loc: str = ""
    containerized_root_mount: str = ""


@dataclass(frozen=True)
class ControllerPath:
    """A controller's cgroup path relative to its mountpoint, and its full path on disk."""

    controller_path: str
    full_path: str
    is_v2: bool = False


@dataclass
class PathList:
    """v1 and v2 controller paths of a process, kept apart so hybrid setups do not collide."""

    v1: dict[str, ControllerPath] = field(default_factory=dict)
    v2: dict[str, ControllerPath] = field(default_factory=dict)

    def flatten(self) -> list[ControllerPath]:
        """All controller paths, v1 first."""
        return [*self.v1.values(), *self.v2.values()]


def parse_mountinfo_line(line: str) -> Mountinfo:
    """Parse one line of ``/proc/[pid]/mountinfo``; malformed lines raise ValueError."""
    fields = line.split()
    if len(fields) < 10:
        raise ValueError(
            f"invalid mountinfo line, expected at least 10 fields but got {len(fields)} from line='{line}'"
        )
    try:
        separator = fields.index("-")
    except ValueError:
        raise ValueError(f"invalid mountinfo line, separator ('-') not found in line='{line}'") from None
    after = fields[separator + 1:]
    if len(after) < 3:
        raise ValueError(
            "invalid mountinfo line, expected at least 3 fields after separator "
            f"but got {len(after)} from line='{line}'"
        )
    return Mountinfo(
        mountpoint=fields[4],
        filesystem_type=after[0],
        super_options=after[2].split(","),
    )


def supported_subsystems(rootfs: HostFS) -> set[str]:
    """Names of the cgroup subsystems the kernel supports and has enabled."""
    try:
        with open(rootfs.resolve_hostfs("/proc/cgroups")) as handle:
            text = handle.read()
    except FileNotFoundError:
        raise CgroupsMissingError() from None

    subsystems: set[str] = set()
    for line in text.splitlines():
        if line.startswith("#"):
            continue
        # subsys_name hierarchy num_cgroups enabled
        fields = line.split()
        if not fields:
            continue
        if len(fields) > 3 and fields[3] == "0":
            continue
        subsystems.add(fields[0])
    return subsystems


def get_proper_v2_paths(rootfs: HostFS, possible_v2_paths: list[str]) -> str:
    """Choose the usable cgroup2 mountpoint among several candidates.

    Overlay filesystem mounts are skipped; with an alternate host root the
    last mountpoint under it is preferred, otherwise the last candidate wins.
    """
    if not possible_v2_paths:
        return ""
    if len(possible_v2_paths) == 1:
        return possible_v2_paths[0]

    filtered = [path for path in possible_v2_paths if "overlay2" not in path]
    if not filtered:
        chosen = possible_v2_paths[-1]
        log.debug("could not find correct cgroupv2 path, reverting to path that may produce errors: %s", chosen)
        return chosen

    if not rootfs.is_set():
        return filtered[-1]

    root = rootfs.resolve_hostfs("")
    under_root = [path for path in filtered if root in path]
    if under_root:
        return under_root[-1]
    chosen = filtered[-1]
    log.debug(
        "An alternate hostfs was specified, but could not find any cgroup mountpoints "
        "that contain a hostfs. Using: %s",
        chosen,
    )
    return chosen


def subsystem_mountpoints(
    rootfs: HostFS, subsystems: Iterable[str], ns_private: Optional[bool] = None
) -> Mountpoints:
    """Find the mountpoint of each given subsystem and of the v2 hierarchy.

    ``ns_private`` tells whether this process runs in a private cgroup
    namespace; when None it is detected only if it is needed.
    """
    wanted = set(subsystems)
    with open(rootfs.resolve_hostfs("/proc/self/mountinfo")) as handle:
        text = handle.read()

    root = rootfs.resolve_hostfs("")
    mounts: dict[str, str] = {}
    possible_v2: list[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        mount = parse_mountinfo_line(line)
        # a mountpoint outside our root belongs to something else
        if not mount.mountpoint.startswith(root):
            continue
        if mount.filesystem_type == "cgroup":
            for option in mount.super_options:
                # the subsystem name is sometimes written as "name=blkio"
                name = option.split("=", 1)[-1]
                if name in wanted and name not in mounts:
                    mounts[name] = mount.mountpoint
        if mount.filesystem_type == "cgroup2":
            possible_v2.append(mount.mountpoint)

    result = Mountpoints(v1_mounts=mounts, v2_loc=get_proper_v2_paths(rootfs, possible_v2))

    if result.v2_loc and rootfs.is_set():
        private = is_cgroup_ns_private() if ns_private is None else ns_private
        if private:
            try:
                result.containerized_root_mount = guess_container_cgroup_path(result.v2_loc, os.getpid())
            except OSError as exc:
                # not fatal: lookups that need this value fail later
                log.debug("could not fetch cgroup path inside container: %s", exc)
    return result