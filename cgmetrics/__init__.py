"""Read metrics and limits of Linux control groups (cgroups v1 and v2) from the filesystem."""

__version__ = "0.1.0"