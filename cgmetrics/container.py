"""Locate the cgroup of a process running inside a container with a private cgroup namespace."""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Iterator
from typing import Optional

from .common import PathLike

_SELF_CGROUP = "/proc/self/cgroup"
_PID_RE = re.compile(r"[+-]?[0-9]+")


class ContainerPathCache:
    """Thread-safe holder for the last cgroup path found for the running container.

    Walking the whole cgroup hierarchy is costly and the answer rarely
    changes, so the result is kept and re-validated on the next lookup.
    """

    def __init__(self, value: str = "") -> None:
        self._lock = threading.Lock()
        self._value = value

    def get(self) -> str:
        """Return the cached path, or an empty string."""
        with self._lock:
            return self._value

    def set(self, value: str) -> None:
        """Replace the cached path."""
        with self._lock:
            self._value = value


CONTAINER_PATH_CACHE = ContainerPathCache()


def is_cgroup_ns_private() -> bool:
    """True when this process runs in its own private cgroup namespace.

    Only meaningful inside a container; an unreadable ``/proc/self/cgroup``
    gives False.
    """
    try:
        with open(_SELF_CGROUP) as handle:
            raw = handle.read()
    except OSError:
        return False
    return raw.strip().split(":")[-1] == "/"


def found_matching_pid_in_procs_file(pid: int, data: str) -> bool:
    """True when a ``cgroup.procs`` listing holds the pid.

    Parsing stops with False at the first line that is not a number.
    """
    for raw in data.split("\n"):
        if not raw:
            continue
        text = raw.strip()
        if not _PID_RE.fullmatch(text):
            return False
        if int(text) == pid:
            return True
    return False


def _walk_files(root: str) -> Iterator[str]:
    """Yield file paths under root in lexical order, not following directory symlinks."""
    try:
        with os.scandir(root) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError as exc:
        raise OSError(f"error traversing paths to find cgroup: {exc}") from exc
    for entry in entries:
        full = os.path.join(root, entry.name)
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_files(full)
        else:
            yield full


def _read_text(path: str) -> Optional[str]:
    try:
        with open(path) as handle:
            return handle.read()
    except OSError:
        return None


def guess_container_cgroup_path(
    v2_loc: PathLike, pid: int, cache: Optional[ContainerPathCache] = None
) -> str:
    """Find the cgroup, relative to the v2 mountpoint, whose ``*procs`` file lists pid.

    A cached path is used when it still lists the pid. Otherwise the whole
    hierarchy is walked; the last matching file wins. Returns an empty string
    when nothing matches, and raises OSError when the hierarchy cannot be walked.
    """
    cache = CONTAINER_PATH_CACHE if cache is None else cache
    root = os.fspath(v2_loc)

    cached = cache.get()
    if cached:
        procs = os.path.join(root, cached.lstrip("/"), "cgroup.procs")
        content = _read_text(procs)
        if content is not None and found_matching_pid_in_procs_file(pid, content):
            return cached

    found = ""
    for file_path in _walk_files(root):
        if "procs" not in os.path.basename(file_path):
            continue
        content = _read_text(file_path)
        if content is None:
            continue
        if found_matching_pid_in_procs_file(pid, content):
            found = file_path

    if not found:
        return ""
    cgroup_dir = os.path.dirname(found)
    relative = cgroup_dir[len(root):] if cgroup_dir.startswith(root) else cgroup_dir
    cache.set(relative)
    return relative