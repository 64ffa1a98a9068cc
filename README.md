# cgmetrics

Read metrics and limits of Linux control groups (cgroups) straight from the
filesystem. Both the v1 hierarchies and the v2 unified hierarchy are
supported, as are hybrid systems that mount both.

A cgroup is a collection of processes bound to a set of limits; a subsystem
(controller) is the kernel component that tracks or limits the resources of
the processes in a cgroup.

## Installation

```
pip install cgmetrics
```

The package has no runtime dependencies. It is a library only; it installs
no command.

## Reading the stats of a process

```python
from cgmetrics.mounts import HostFS
from cgmetrics.reader import new_reader

reader = new_reader(HostFS("/"), True)

stats = reader.get_stats_for_pid(1234)
print(stats.cg_version(), stats.path, stats.id)
```

`get_stats_for_pid` works out whether the process is attached to cgroups v1
or v2 (`Reader.cgroups_version`) and returns a `StatsV1` or `StatsV2`. To ask
for a specific version, use `get_v1_stats_for_process` or
`get_v2_stats_for_process`.

`StatsV1` carries the `cpu`, `cpu_accounting` and `memory` subsystems;
`StatsV2` carries the `cpu`, `memory` and `io` controllers. A controller the
process does not use is left as `None`. When all controllers share one path,
`path` and `id` hold it and its last element; otherwise both are empty.

When running inside a container with the host's root filesystem mounted
somewhere else, for example at `/hostfs`, pass that location:

```python
reader = new_reader(HostFS("/hostfs"), False)
```

For more control, build a `Reader` from `ReaderOptions`:

```python
from cgmetrics.reader import Reader, ReaderOptions

reader = Reader(ReaderOptions(
    rootfs=HostFS("/"),
    ignore_root_cgroups=False,
    cgroups_hierarchy_override="/",
))
```

- `ignore_root_cgroups` skips controllers whose cgroup path is `/`.
- `cgroups_hierarchy_override` replaces the paths listed in
  `/proc/<pid>/cgroup`. Set it to `"/"` inside a Docker container, where those
  paths do not correspond to paths under `/sys/fs/cgroup`.
- `cgroup_ns_private` says whether this process runs in a private cgroup
  namespace; left as `None`, it is detected from `/proc/self/cgroup`.

The list of v2 controllers found for a cgroup directory is cached by the
reader for five minutes.

## Lower-level pieces

- `cgmetrics.mounts`: `supported_subsystems`, `subsystem_mountpoints`,
  `get_proper_v2_paths` and `parse_mountinfo_line` locate the controllers the
  kernel offers. `HostFS` resolves paths under an alternate host root.
- `cgmetrics.reader.process_cgroup_paths` lists the controller paths of a
  process. It keeps v1 and v2 paths apart in a `PathList`; `PathList.flatten`
  returns them together.
- `cgmetrics.container`: `guess_container_cgroup_path` finds the cgroup of a
  process by searching the v2 hierarchy for a `cgroup.procs` file that lists
  it, caching the answer in a `ContainerPathCache`.
- `cgmetrics.v1` holds the `cpu`, `cpuacct` and `memory` subsystems of
  cgroups v1.
- `cgmetrics.v2` holds the `cpu`, `memory` and `io` controllers of the
  unified hierarchy, and `devices.fetch_device_name`, which maps a
  major/minor pair to a name under `/dev`.
- `cgmetrics.common` holds the parsers shared by both versions, including
  `get_pressure` for pressure stall information files.

Each subsystem class has a `get(path)` method (the v2 `IOSubsystem` takes
`get(path, resolve_dev_ids)`) that reads its files from a cgroup directory.

## Errors

A missing `/proc/cgroups` raises `CgroupsMissingError`: the kernel has no
cgroup support or the root filesystem path is wrong. Files that cannot be read
raise `OSError`; malformed contents raise `ValueError` (a bad `key value` line
raises `InvalidFormatError`, a subclass of it).

## What it does not do

- The v1 `blkio` subsystem is not read; `StatsV1` has no block I/O figures.
- CPU percentages are not computed. `CPUUsage` has `pct` and `norm_pct`
  fields, but nothing in the package fills them from two samples.
- Statistics are returned as dataclasses; there is no conversion to a
  flat report or document format, and no command-line tool.