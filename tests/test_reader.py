import os
from pathlib import Path

import pytest

from cgmetrics.mounts import CgroupsMissingError, HostFS
from cgmetrics.reader import Reader, ReaderOptions, new_reader, process_cgroup_paths
from cgmetrics.stats import CgroupsVersion, StatsV1, StatsV2

ID = "b29faf21b7eff959f64b4192c34d5d67a707fe8561e9eaa608cb27693fba4242"
PATH = "/docker/" + ID

ID_HYBRID = "cri-containerd-1d3d308a7d48a27814a68bf33a44acf4441c9c02463ca0bc1cdfdc8c0b4a8496.scope"
PATH_HYBRID = (
    "/kubepods.slice/kubepods-burstable.slice/"
    "kubepods-burstable-pod7a96c459_d529_44ae_9f99_90d3798d6426.slice/" + ID_HYBRID
)

ID_V2 = "docker-1c8fa019edd4b9d4b2856f4932c55929c5c118c808ed5faee9a135ca6e84b039.scope"
PATH_V2 = "/system.slice/" + ID_V2

SERVICE_PATH = "/system.slice/networkd-dispatcher.service"

CGROUPS = (
    "#subsys_name\thierarchy\tnum_cgroups\tenabled\n"
    "cpuset\t8\t1\t1\n"
    "cpu\t7\t1\t1\n"
    "cpuacct\t7\t1\t1\n"
    "blkio\t5\t1\t1\n"
    "memory\t10\t1\t1\n"
    "devices\t3\t1\t1\n"
    "freezer\t6\t1\t1\n"
    "net_cls\t4\t1\t1\n"
    "perf_event\t2\t1\t1\n"
    "net_prio\t4\t1\t1\n"
    "hugetlb\t9\t1\t0\n"
    "pids\t11\t1\t1\n"
)

V1_MOUNTED = ["blkio", "cpu", "cpuacct", "cpuset", "devices", "freezer", "memory", "perf_event", "pids"]

IO_PRESSURE = (
    "some avg10=3.00 avg60=2.10 avg300=4.00 total=1154482\n"
    "full avg10=10.00 avg60=30.00 avg300=0.50 total=1154482\n"
)
CPU_PRESSURE = "some avg10=0.00 avg60=0.00 avg300=0.00 total=0\n"


def _write(root: Path, rel: str, content: str) -> None:
    target = root / rel.lstrip("/")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)


def _mountinfo(root: Path, with_v2: bool) -> str:
    lines = [
        f"{n} 24 0:{n} / {root}/sys/fs/cgroup/{name} rw,nosuid,nodev,noexec,relatime shared:{n} - cgroup cgroup rw,{name}"
        for n, name in enumerate(V1_MOUNTED, start=30)
    ]
    if with_v2:
        lines.append(
            f"99 24 0:99 / {root}/sys/fs/cgroup rw,nosuid,nodev,noexec,relatime shared:99 - cgroup2 cgroup2 rw"
        )
    return "\n".join(lines) + "\n"


def _v1_cgroup_file(path: str) -> str:
    return (
        f"11:net_cls,net_prio:{path}\n"
        f"10:perf_event:{path}\n"
        f"9:freezer:{path}\n"
        f"8:devices:{path}\n"
        f"7:cpu,cpuacct:{path}\n"
        f"6:cpuset:{path}\n"
        f"5:memory:{path}\n"
        f"4:blkio:{path}\n"
    )


def _v1_data(root: Path, path: str) -> None:
    cpu = f"sys/fs/cgroup/cpu{path}"
    _write(root, f"{cpu}/cpu.cfs_period_us", "100000\n")
    _write(root, f"{cpu}/cpu.cfs_quota_us", "-1\n")
    _write(root, f"{cpu}/cpu.shares", "1024\n")
    _write(root, f"{cpu}/cpu.rt_period_us", "1000000\n")
    _write(root, f"{cpu}/cpu.rt_runtime_us", "0\n")
    _write(root, f"{cpu}/cpu.stat", "nr_periods 769021\nnr_throttled 1046\nthrottled_time 352597023453\n")
    cpuacct = f"sys/fs/cgroup/cpuacct{path}"
    _write(root, f"{cpuacct}/cpuacct.usage", "95996653175\n")
    _write(root, f"{cpuacct}/cpuacct.stat", "user 6195\nsystem 773\n")
    _write(root, f"{cpuacct}/cpuacct.usage_percpu", "26571366716 23186161834 24301269665 21940850818\n")
    memory = f"sys/fs/cgroup/memory{path}"
    _write(root, f"{memory}/memory.usage_in_bytes", "295997440\n")
    _write(root, f"{memory}/memory.max_usage_in_bytes", "298532864\n")
    _write(root, f"{memory}/memory.limit_in_bytes", "9223372036854771712\n")
    _write(root, f"{memory}/memory.failcnt", "0\n")
    _write(root, f"{memory}/memory.stat", "cache 65101824\nrss 230662144\n")


@pytest.fixture
def docker_root(tmp_path: Path) -> Path:
    root = tmp_path / "docker"
    _write(root, "proc/cgroups", CGROUPS)
    _write(root, "proc/self/mountinfo", _mountinfo(root, with_v2=True))

    _write(root, "proc/985/cgroup", _v1_cgroup_file(PATH))
    _v1_data(root, PATH)

    _write(root, "proc/1/cgroup", "7:cpu,cpuacct:/init.scope\n5:memory:/init.scope\n")
    _write(root, "sys/fs/cgroup/cpu/cpu.shares", "1024\n")

    _write(
        root,
        "proc/3757/cgroup",
        f"6:cpuset:/\n5:memory:{SERVICE_PATH}\n4:cpu,cpuacct:{SERVICE_PATH}\n1:name=systemd:{SERVICE_PATH}\n",
    )

    _write(root, "proc/312/cgroup", f"0::{PATH_V2}\n")
    scope = f"sys/fs/cgroup{PATH_V2}"
    _write(root, f"{scope}/cgroup.stat", "nr_descendants 0\nnr_dying_descendants 0\n")
    _write(root, f"{scope}/cpu.stat", "usage_usec 26772130245\nuser_usec 20979069929\nsystem_usec 5793060316\n")
    _write(root, f"{scope}/cpu.pressure", CPU_PRESSURE)
    _write(root, f"{scope}/memory.stat", "slab_reclaimable 17756400\nthp_fault_alloc 12\n")
    _write(root, f"{scope}/memory.low", "4\n")
    _write(root, f"{scope}/memory.high", "max\n")
    _write(root, f"{scope}/memory.max", "max\n")
    _write(root, f"{scope}/memory.current", "9125888\n")
    _write(root, f"{scope}/memory.events", "low 0\nhigh 3\nmax 0\noom 0\noom_kill 0\n")
    _write(
        root,
        f"{scope}/io.stat",
        "8:0 rbytes=512 wbytes=4096 rios=100 wios=1 dbytes=5 dios=23\n"
        "253:0 rbytes=1024 wbytes=4096 rios=1 wios=1 dbytes=6 dios=8\n",
    )
    _write(root, f"{scope}/io.pressure", IO_PRESSURE)

    _write(root, "sys/fs/cgroup/system.slice/cpu.stat", "usage_usec 1000\nuser_usec 600\nsystem_usec 400\n")
    _write(root, "sys/fs/cgroup/system.slice/cpu.pressure", CPU_PRESSURE)

    _write(root, "proc/400/cgroup", "1:name=systemd:/mixed.scope\n0::/mixed.scope\n")
    _write(root, "sys/fs/cgroup/mixed.scope/cgroup.controllers", "cpu memory")
    _write(root, "proc/401/cgroup", "1:name=systemd:/empty.scope\n0::/empty.scope\n")
    _write(root, "sys/fs/cgroup/empty.scope/cgroup.controllers", "")
    _write(root, "proc/402/cgroup", "1:name=systemd:/missing.scope\n0::/missing.scope\n")
    return root


@pytest.fixture
def amzn2_root(tmp_path: Path) -> Path:
    root = tmp_path / "amzn2"
    _write(root, "proc/cgroups", CGROUPS)
    _write(root, "proc/self/mountinfo", _mountinfo(root, with_v2=False))
    _write(
        root,
        "proc/493239/cgroup",
        f"12:pids:{PATH_HYBRID}\n"
        f"11:hugetlb:{PATH_HYBRID}\n"
        f"10:net_cls,net_prio:{PATH_HYBRID}\n"
        f"9:perf_event:{PATH_HYBRID}\n"
        f"8:freezer:{PATH_HYBRID}\n"
        f"7:devices:{PATH_HYBRID}\n"
        f"6:cpuset:{PATH_HYBRID}\n"
        f"5:memory:{PATH_HYBRID}\n"
        f"4:cpu,cpuacct:{PATH_HYBRID}\n"
        f"3:blkio:{PATH_HYBRID}\n"
        f"1:name=systemd:{PATH_HYBRID}\n"
        "0::/\n",
    )
    _v1_data(root, PATH_HYBRID)
    _write(root, "proc/500/cgroup", "0::/foo.scope\n")
    _write(root, "sys/fs/cgroup/unified/foo.scope/cpu.stat", "usage_usec 10\n")
    return root


def _reader(root: Path, **kwargs) -> Reader:
    return Reader(ReaderOptions(rootfs=HostFS(str(root)), cgroup_ns_private=False, **kwargs))


def test_reader_get_stats_v1(docker_root):
    stats = _reader(docker_root, ignore_root_cgroups=True).get_v1_stats_for_process(985)

    assert stats.id == ID
    assert stats.cpu.id == ID
    assert stats.cpu_accounting.id == ID
    assert stats.memory.id == ID

    assert stats.cpu.cfs.period_us == 100000
    assert stats.cpu_accounting.total.ns == 95996653175
    assert len(stats.cpu_accounting.usage_per_cpu) == 4
    assert stats.memory.mem.usage.bytes == 295997440

    assert stats.path == PATH
    assert stats.cpu.path == PATH
    assert stats.cpu_accounting.path == PATH
    assert stats.memory.path == PATH
    assert stats.version == CgroupsVersion.V1


def test_v1_event_different_paths(docker_root):
    stats = _reader(docker_root, ignore_root_cgroups=True).get_v1_stats_for_process(3757)
    assert stats.path == SERVICE_PATH
    assert stats.id == "networkd-dispatcher.service"


def test_v1_different_paths_without_ignoring_root(docker_root):
    stats = _reader(docker_root, ignore_root_cgroups=False).get_v1_stats_for_process(3757)
    assert (stats.path, stats.id) == ("", "")


def test_reader_get_stats_v1_malformed_hybrid(amzn2_root):
    stats = _reader(amzn2_root, ignore_root_cgroups=True).get_v1_stats_for_process(493239)

    assert stats.id == ID_HYBRID
    assert stats.cpu.id == ID_HYBRID
    assert stats.cpu_accounting.id == ID_HYBRID
    assert stats.memory.id == ID_HYBRID

    assert stats.cpu.cfs.period_us == 100000
    assert stats.cpu_accounting.total.ns == 95996653175
    assert stats.memory.mem.usage.bytes == 295997440

    assert stats.path == PATH_HYBRID
    assert stats.cpu.path == PATH_HYBRID
    assert stats.cpu_accounting.path == PATH_HYBRID
    assert stats.memory.path == PATH_HYBRID


def test_reader_get_stats_v2(docker_root):
    stats = _reader(docker_root, ignore_root_cgroups=True).get_v2_stats_for_process(312)

    assert stats.path == PATH_V2
    assert stats.id == ID_V2
    assert stats.version == CgroupsVersion.V2

    assert stats.cpu.stats.usage.ns == 26772130245
    assert stats.cpu.stats.system.ns == 5793060316
    assert stats.memory.mem.usage == 9125888
    assert stats.memory.mem.events.high == 3
    assert stats.memory.stats.slab_reclaimable == 17756400
    assert stats.io.pressure["some"].sixty == pytest.approx(2.1)
    assert stats.io.id == ID_V2


def test_reader_get_stats_hierarchy_override(docker_root):
    reader = _reader(docker_root, ignore_root_cgroups=False, cgroups_hierarchy_override="/")
    stats = reader.get_v1_stats_for_process(1)
    assert stats.cpu is not None
    assert stats.cpu.cfs.shares == 1024
    assert stats.path == "/"

    reader2 = _reader(docker_root, ignore_root_cgroups=True, cgroups_hierarchy_override="/system.slice/")
    stats2 = reader2.get_v2_stats_for_process(312)
    assert stats2.cpu is not None
    assert stats2.cpu.stats.usage.ns == 1000


def test_process_cgroup_paths(docker_root):
    paths = _reader(docker_root).process_cgroup_paths(985)
    for name in ("blkio", "cpu", "cpuacct", "cpuset", "devices", "freezer",
                 "memory", "net_cls", "net_prio", "perf_event"):
        assert paths.v1[name].controller_path == PATH
        assert paths.v1[name].is_v2 is False
    assert paths.v1["cpu"].full_path == f"{docker_root}/sys/fs/cgroup/cpu{PATH}"
    assert len(paths.flatten()) == 10


def test_process_cgroup_hybrid_paths(amzn2_root):
    paths = _reader(amzn2_root).process_cgroup_paths(493239)
    for name in ("blkio", "cpu", "cpuacct", "cpuset", "devices", "freezer",
                 "memory", "net_cls", "net_prio", "perf_event", "hugetlb"):
        assert paths.v1[name].controller_path == PATH_HYBRID
    assert paths.v2 == {}
    assert len(paths.flatten()) == 13


def test_process_cgroup_paths_v2(docker_root):
    paths = _reader(docker_root).process_cgroup_paths(312)
    expected = f"{docker_root}/sys/fs/cgroup{PATH_V2}"
    for name in ("cgroup", "cpu", "io", "memory"):
        assert paths.v2[name].full_path == expected
        assert paths.v2[name].controller_path == PATH_V2
        assert paths.v2[name].is_v2 is True
    assert paths.v1 == {}


def test_v2_paths_without_mount_use_unified_under_hostfs(amzn2_root):
    paths = _reader(amzn2_root).process_cgroup_paths(500)
    assert paths.v2["cpu"].full_path == f"{amzn2_root}/sys/fs/cgroup/unified/foo.scope"
    assert paths.v2["cpu"].controller_path == "/foo.scope"


def test_v2_controller_paths_are_cached(docker_root):
    reader = _reader(docker_root)
    first = reader.process_cgroup_paths(312)
    (docker_root / f"sys/fs/cgroup{PATH_V2}" / "io.stat").unlink()
    second = reader.process_cgroup_paths(312)
    assert second.v2 == first.v2
    assert "io" in second.v2


def test_cgroups_version(docker_root):
    reader = _reader(docker_root)
    assert reader.cgroups_version(985) == CgroupsVersion.V1
    assert reader.cgroups_version(312) == CgroupsVersion.V2
    assert reader.cgroups_version(400) == CgroupsVersion.V2
    assert reader.cgroups_version(401) == CgroupsVersion.V1


def test_cgroups_version_missing_controllers_file(docker_root):
    with pytest.raises(FileNotFoundError):
        _reader(docker_root).cgroups_version(402)


def test_cgroups_version_unknown_pid(docker_root):
    with pytest.raises(OSError):
        _reader(docker_root).cgroups_version(345)


def test_process_cgroup_paths_unknown_pid(docker_root):
    with pytest.raises(FileNotFoundError):
        _reader(docker_root).process_cgroup_paths(9999)


def test_get_stats_for_pid_dispatches_on_version(docker_root):
    reader = _reader(docker_root, ignore_root_cgroups=True)
    v1 = reader.get_stats_for_pid(985)
    v2 = reader.get_stats_for_pid(312)
    assert isinstance(v1, StatsV1)
    assert v1.id == ID
    assert isinstance(v2, StatsV2)
    assert v2.path == PATH_V2


def test_reader_without_cgroups(tmp_path):
    with pytest.raises(CgroupsMissingError):
        Reader(ReaderOptions(rootfs=HostFS(str(tmp_path / "doesnotexist")), cgroup_ns_private=False))


def test_module_process_cgroup_paths(docker_root):
    paths = process_cgroup_paths(HostFS(str(docker_root)), 985)
    assert paths.v1["cpu"].controller_path == PATH
    assert len(paths.flatten()) == 10


def test_new_reader_ignores_root(docker_root):
    stats = new_reader(HostFS(str(docker_root)), True).get_v1_stats_for_process(3757)
    assert stats.path == SERVICE_PATH


def test_mountpoints_v2_private_namespace(tmp_path):
    root = tmp_path / "docker2"
    _write(root, "proc/cgroups", "#subsys_name\thierarchy\tnum_cgroups\tenabled\ncpu\t0\t1\t1\n")
    _write(
        root,
        "proc/self/mountinfo",
        f"99 24 0:99 / {root}/sys/fs/cgroup rw,nosuid,nodev,noexec,relatime shared:99 - cgroup2 cgroup2 rw\n",
    )
    _write(root, "proc/2233801/cgroup", "0::/\n")
    session = "sys/fs/cgroup/user.slice/user-1000.slice/session-520.scope"
    _write(root, "sys/fs/cgroup/cgroup.procs", "1\n2\n")
    _write(root, f"{session}/cgroup.procs", f"{os.getpid()}\n")
    _write(root, f"{session}/cpu.stat", "usage_usec 10\nuser_usec 6\nsystem_usec 4\n")
    _write(root, f"{session}/memory.stat", "anon 4096\n")

    reader = Reader(ReaderOptions(rootfs=HostFS(str(root)), cgroup_ns_private=True))
    assert reader.mountpoints.containerized_root_mount == "/user.slice/user-1000.slice/session-520.scope"

    stats = reader.get_stats_for_pid(2233801)
    assert isinstance(stats, StatsV2)
    assert stats.id == "session-520.scope"
    assert stats.path == "/user.slice/user-1000.slice/session-520.scope"
    assert stats.memory.stats.anon == 4096