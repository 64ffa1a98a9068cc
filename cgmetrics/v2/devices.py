"""Resolve block device major/minor numbers to device names under /dev."""

from __future__ import annotations

import os
import stat
import sys
from typing import Optional

_DEV_DIR = "/dev/"
_UINT64_MASK = 2**64 - 1


def split_device_number(rdev: int) -> tuple[int, int]:
    """Split an encoded device number into (major, minor), handling 32 and 64 bit layouts."""
    rdev &= _UINT64_MASK
    major = ((rdev & 0xFFFFF00000000000) >> 32) | ((rdev & 0x00000000000FFF00) >> 8)
    minor = (rdev & 0x00000000000000FF) | ((rdev & 0x00000FFFFFF00000) >> 12)
    return major, minor


def fetch_device_name(major: int, minor: int) -> Optional[str]:
    """Return the name of the block device in /dev with the given numbers, or None.

    Only the top level of /dev is searched; if several entries match, the last
    one in name order wins. Raises OSError on platforms other than Linux or
    when /dev cannot be listed.
    """
    if not sys.platform.startswith("linux"):
        raise OSError("device name lookup is only supported on Linux")
    try:
        with os.scandir(_DEV_DIR) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError as exc:
        raise OSError(f"error walking {_DEV_DIR}: {exc}") from exc

    found: Optional[str] = None
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                continue
            info = entry.stat(follow_symlinks=False)
        except OSError:
            continue
        if not stat.S_ISBLK(info.st_mode):
            continue
        if split_device_number(info.st_rdev) == (major, minor):
            found = entry.name
    return found