"""Read cgroup metrics and limits for processes, from either cgroups v1 or v2."""

from __future__ import annotations

import logging
import os
import posixpath
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

from .container import is_cgroup_ns_private
from .mounts import (
    ControllerPath,
    HostFS,
    Mountpoints,
    PathList,
    subsystem_mountpoints,
    supported_subsystems,
)
from .stats import CgroupsVersion, StatsV1, StatsV2, get_common_cgroup_metadata

log = logging.getLogger(__name__)

_V2_CACHE_TTL_SECONDS = 5 * 60.0


def _join(*parts: str) -> str:
    """Join non-empty path parts and clean the result; all-empty parts give ""."""
    kept = [part for part in parts if part]
    if not kept:
        return ""
    joined = posixpath.normpath("/".join(kept))
    if joined.startswith("//"):
        joined = "/" + joined.lstrip("/")
    return joined


def _wrap(exc: Exception, message: str) -> Exception:
    """Return an exception of the same family as exc with message prepended."""
    if isinstance(exc, OSError):
        if exc.errno is not None:
            return OSError(exc.errno, f"{message}: {exc.strerror}", exc.filename)
        return OSError(f"{message}: {exc}")
    return ValueError(f"{message}: {exc}")


@dataclass
class ReaderOptions:
    """Options for a Reader.

    ``rootfs`` is the host's root filesystem (``/`` when None).
    ``ignore_root_cgroups`` skips controllers whose path is ``/``.
    ``cgroups_hierarchy_override`` replaces the paths listed in
    ``/proc/<pid>/cgroup``; set it to ``/`` inside a Docker container.
    ``cgroup_ns_private`` tells whether this process runs in a private cgroup
    namespace; when None it is detected from ``/proc/self/cgroup``.
    """

    rootfs: Optional[HostFS] = None
    ignore_root_cgroups: bool = False
    cgroups_hierarchy_override: str = ""
    cgroup_ns_private: Optional[bool] = None


class Reader:
    """Reads cgroup metrics and limits of processes."""

    def __init__(self, options: Optional[ReaderOptions] = None) -> None:
        options = ReaderOptions() if options is None else options
        self.rootfs: HostFS = HostFS("/") if options.rootfs is None else options.rootfs
        self.ignore_root_cgroups = options.ignore_root_cgroups
        self.cgroups_hierarchy_override = options.cgroups_hierarchy_override
        self._ns_private_setting = options.cgroup_ns_private

        # CgroupsMissingError passes through unchanged
        subsystems = supported_subsystems(self.rootfs)
        try:
            self.mountpoints: Mountpoints = subsystem_mountpoints(
                self.rootfs, subsystems, options.cgroup_ns_private
            )
        except (OSError, ValueError) as exc:
            raise _wrap(exc, "error finding mountpoints") from exc

        self._v2_cache: dict[str, tuple[float, dict[str, ControllerPath]]] = {}
        self._v2_cache_lock = threading.Lock()

    def _ns_private(self) -> bool:
        if self._ns_private_setting is not None:
            return self._ns_private_setting
        return is_cgroup_ns_private()

    def cgroups_version(self, pid: int) -> CgroupsVersion:
        """Tell whether the process is attached to a v1 or a v2 hierarchy."""
        cg_path = self.rootfs.resolve_hostfs(_join("/proc/", str(pid), "cgroup"))
        try:
            with open(cg_path) as handle:
                content = handle.read()
        except OSError as exc:
            raise _wrap(exc, f"error reading {cg_path}") from exc

        # v2 entries always begin with "0::/"; some distributions add an
        # unused v2 entry next to the v1 ones.
        if "0::/" not in content:
            return CgroupsVersion.V1
        if len(content.strip().split("\n")) == 1:
            return CgroupsVersion.V2
        try:
            controllers = self._read_controller_list(content)
        except OSError as exc:
            raise _wrap(exc, f"error fetching cgroup controller list for pid {pid}") from exc
        # a hybrid setup counts as v2 only if the v2 cgroup has controllers
        if controllers:
            log.debug("fetching V2 controller: %r for pid %d", controllers, pid)
            return CgroupsVersion.V2
        return CgroupsVersion.V1

    def _read_controller_list(self, content: str) -> list[str]:
        v2_loc = self.mountpoints.v2_loc
        if not v2_loc:
            return []
        cgpath = ""
        for line in content.split("\n"):
            if "0::/" in line:
                cgpath = line.split(":")[2]
        if not cgpath:
            return []
        if self._ns_private() and self.rootfs.is_set():
            file_path = _join(
                v2_loc, self.mountpoints.containerized_root_mount, cgpath, "cgroup.controllers"
            )
        else:
            file_path = _join(v2_loc, cgpath, "cgroup.controllers")
        try:
            with open(file_path) as handle:
                raw = handle.read()
        except OSError as exc:
            raise _wrap(exc, f"error reading cgroup '{cgpath}': file {file_path}") from exc
        if not raw:
            return []
        return raw.split(" ")

    def get_stats_for_pid(self, pid: int) -> Union[StatsV1, StatsV2]:
        """Return v1 or v2 statistics, whichever hierarchy the process uses."""
        try:
            version = self.cgroups_version(pid)
        except (OSError, ValueError) as exc:
            raise _wrap(exc, f"error finding cgroup version for pid {pid}") from exc
        if version == CgroupsVersion.V1:
            return self.get_v1_stats_for_process(pid)
        return self.get_v2_stats_for_process(pid)

    def _skip(self, cg_path: ControllerPath) -> bool:
        return (
            self.ignore_root_cgroups
            and cg_path.controller_path == "/"
            and self.cgroups_hierarchy_override != cg_path.controller_path
        )

    def get_v1_stats_for_process(self, pid: int) -> StatsV1:
        """Return the cgroups v1 metrics and limits of a process."""
        paths = self.process_cgroup_paths(pid)
        stats = StatsV1()
        stats.path, stats.id = get_common_cgroup_metadata(paths.v1, self.ignore_root_cgroups)
        for name, cg_path in paths.v1.items():
            if self._skip(cg_path):
                continue
            try:
                stats.add_controller(cg_path, name)
            except (OSError, ValueError) as exc:
                raise _wrap(exc, f"error fetching stats for controller {name}") from exc
        return stats

    def get_v2_stats_for_process(self, pid: int) -> StatsV2:
        """Return the cgroups v2 metrics and limits of a process."""
        paths = self.process_cgroup_paths(pid)
        stats = StatsV2()
        stats.path, stats.id = get_common_cgroup_metadata(paths.v2, self.ignore_root_cgroups)
        for name, cg_path in paths.v2.items():
            if self._skip(cg_path):
                continue
            try:
                stats.add_controller(cg_path, name)
            except (OSError, ValueError) as exc:
                raise _wrap(exc, f"error fetching stats for controller {name}") from exc
        return stats

    def _cached_v2(self, controller_path: str) -> Optional[dict[str, ControllerPath]]:
        with self._v2_cache_lock:
            entry = self._v2_cache.get(controller_path)
            if entry is None:
                return None
            added, controllers = entry
            if time.monotonic() - added < _V2_CACHE_TTL_SECONDS:
                return dict(controllers)
            del self._v2_cache[controller_path]
            return None

    def process_cgroup_paths(self, pid: int) -> PathList:
        """Return the cgroups of a process, each relative to its subsystem's mountpoint.

        An unreadable ``/proc/<pid>/cgroup`` raises the plain OSError.
        """
        cgroup_file = self.rootfs.resolve_hostfs(_join("proc", str(pid), "cgroup"))
        with open(cgroup_file) as handle:
            content = handle.read()

        try:
            version = self.cgroups_version(pid)
        except (OSError, ValueError) as exc:
            raise _wrap(exc, f"error finding cgroup version for pid {pid}") from exc

        mounts = self.mountpoints
        paths = PathList()
        for line in content.splitlines():
            # hierarchy-ID:subsystem-list:cgroup-path
            fields = line.split(":")
            if len(fields) != 3:
                continue

            path = fields[2]
            if self.cgroups_hierarchy_override:
                path = self.cgroups_hierarchy_override

            # in a private namespace the path is relative to the container's cgroup
            if self._ns_private() and self.rootfs.is_set():
                if not mounts.containerized_root_mount:
                    log.debug(
                        "cgroup for process %d contains a relative cgroup path (%s), but we were "
                        "not able to find a root cgroup. Cgroup monitoring for this PID may be incomplete",
                        pid,
                        path,
                    )
                else:
                    log.debug("using root mount %s and path %s", mounts.containerized_root_mount, path)
                    path = _join(mounts.containerized_root_mount, path)

            if not line.startswith("0::/"):
                for subsystem in fields[1].split(","):
                    full_path = _join(mounts.v1_mounts.get(subsystem, ""), path)
                    paths.v1[subsystem] = ControllerPath(
                        controller_path=path, full_path=full_path, is_v2=False
                    )
                continue

            # a bare v2 root next to v1 controllers, with no v2 mount: leave v1 collection intact
            if version == CgroupsVersion.V1 and line == "0::/" and not mounts.v2_loc:
                continue

            controller_path = _join(mounts.v2_loc, path)
            if not mounts.v2_loc:
                if not self.rootfs.is_set():
                    log.debug(
                        "PID %d contains a cgroups V2 path (%s) but no V2 mountpoint was found. "
                        "Mount the unified hierarchy as /sys/fs/cgroup/unified and set a hostfs "
                        "to monitor it from inside a container.",
                        pid,
                        line,
                    )
                    continue
                controller_path = self.rootfs.resolve_hostfs(_join("/sys/fs/cgroup/unified", path))

            cached = self._cached_v2(controller_path)
            if cached is not None:
                paths.v2 = cached
                continue

            try:
                names = sorted(os.listdir(controller_path))
            except OSError as exc:
                raise _wrap(
                    exc,
                    f"error fetching cgroupV2 controllers for cgroup location "
                    f"'{mounts.v2_loc}' and path line '{line}'",
                ) from exc
            # v2 does not list controllers per process; derive them from the *.stat files
            for name in names:
                if "stat" in name:
                    controller = name[: -len(".stat")] if name.endswith(".stat") else name
                    paths.v2[controller] = ControllerPath(
                        controller_path=path, full_path=controller_path, is_v2=True
                    )
            with self._v2_cache_lock:
                self._v2_cache[controller_path] = (time.monotonic(), dict(paths.v2))

        return paths


def new_reader(rootfs: Optional[HostFS], ignore_root_cgroups: bool) -> Reader:
    """Create a Reader for the given host root."""
    return Reader(ReaderOptions(rootfs=rootfs, ignore_root_cgroups=ignore_root_cgroups))


def process_cgroup_paths(hostfs: Optional[HostFS], pid: int) -> PathList:
    """Return the cgroup paths of a process without keeping a Reader around."""
    try:
        reader = new_reader(hostfs, False)
    except (OSError, ValueError) as exc:
        raise _wrap(exc, "error creating cgroups reader") from exc
    return reader.process_cgroup_paths(pid)