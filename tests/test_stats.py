import pytest

from cgmetrics.mounts import ControllerPath
from cgmetrics.stats import CgroupsVersion, StatsV1, StatsV2, get_common_cgroup_metadata
from cgmetrics.v2.io import IOMetric, IOStat

PATH = "/docker/b29faf21b7eff959f64b4192c34d5d67a707fe8561e9eaa608cb27693fba4242"
ID = "b29faf21b7eff959f64b4192c34d5d67a707fe8561e9eaa608cb27693fba4242"
PATH_V2 = "/system.slice/docker-1c8fa019edd4b9d4b2856f4932c55929c5c118c808ed5faee9a135ca6e84b039.scope"
ID_V2 = "docker-1c8fa019edd4b9d4b2856f4932c55929c5c118c808ed5faee9a135ca6e84b039.scope"


def test_versions():
    assert StatsV1().cg_version() is CgroupsVersion.V1
    assert StatsV2().cg_version() is CgroupsVersion.V2
    assert StatsV1().version == CgroupsVersion.V1
    assert int(CgroupsVersion.V2) == 2


def test_common_metadata_shared_path():
    mounts = {name: ControllerPath(PATH, "/mnt/" + name + PATH) for name in ("cpu", "memory", "blkio")}
    assert get_common_cgroup_metadata(mounts, False) == (PATH, ID)


def test_common_metadata_differing_paths():
    mounts = {"cpu": ControllerPath(PATH, "/x"), "memory": ControllerPath(PATH_V2, "/y")}
    assert get_common_cgroup_metadata(mounts, False) == ("", "")


def test_common_metadata_ignores_v1_root():
    mounts = {"cpu": ControllerPath("/", "/mnt/cpu"), "memory": ControllerPath(PATH_V2, "/y")}
    assert get_common_cgroup_metadata(mounts, True) == (PATH_V2, ID_V2)
    assert get_common_cgroup_metadata(mounts, False) == ("", "")


def test_common_metadata_keeps_v2_root():
    mounts = {"cpu": ControllerPath("/", "/mnt", is_v2=True), "io": ControllerPath(PATH_V2, "/y", is_v2=True)}
    assert get_common_cgroup_metadata(mounts, True) == ("", "")


def test_v1_add_cpu(tmp_path):
    (tmp_path / "cpu.cfs_period_us").write_text("100000\n")
    (tmp_path / "cpu.shares").write_text("1024\n")
    stats = StatsV1()
    stats.add_controller(ControllerPath(PATH, str(tmp_path)), "cpu")
    assert stats.cpu.cfs.period_us == 100000
    assert stats.cpu.cfs.shares == 1024
    assert stats.cpu.id == ID
    assert stats.cpu.path == PATH
    assert stats.memory is None


def test_v1_add_cpuacct_and_memory(tmp_path):
    (tmp_path / "cpuacct.usage").write_text("95996653175\n")
    (tmp_path / "memory.usage_in_bytes").write_text("295997440\n")
    stats = StatsV1()
    controller = ControllerPath(PATH, str(tmp_path))
    stats.add_controller(controller, "cpuacct")
    stats.add_controller(controller, "memory")
    assert stats.cpu_accounting.total.ns == 95996653175
    assert stats.memory.mem.usage.bytes == 295997440
    assert stats.memory.id == ID


def test_v1_unknown_controller_ignored(tmp_path):
    stats = StatsV1()
    stats.add_controller(ControllerPath(PATH, str(tmp_path)), "freezer")
    assert (stats.cpu, stats.cpu_accounting, stats.memory) == (None, None, None)


def test_v2_add_memory(tmp_path):
    (tmp_path / "memory.stat").write_text("anon 5\nslab_reclaimable 17756400\n")
    stats = StatsV2()
    stats.add_controller(ControllerPath(PATH_V2, str(tmp_path), is_v2=True), "memory")
    assert stats.memory.stats.anon == 5
    assert stats.memory.stats.slab_reclaimable == 17756400
    assert stats.memory.id == ID_V2
    assert stats.memory.path == PATH_V2


def test_v2_add_memory_missing_stat(tmp_path):
    stats = StatsV2()
    with pytest.raises(FileNotFoundError):
        stats.add_controller(ControllerPath(PATH_V2, str(tmp_path), is_v2=True), "memory")


def test_v2_add_cpu_without_pressure(tmp_path):
    (tmp_path / "cpu.stat").write_text("usage_usec 26772130245\n")
    stats = StatsV2()
    stats.add_controller(ControllerPath(PATH_V2, str(tmp_path), is_v2=True), "cpu")
    assert stats.cpu.pressure == {}
    assert stats.cpu.stats.usage.ns == 0
    assert stats.cpu.id == ID_V2


def test_v2_add_io(tmp_path):
    (tmp_path / "io.stat").write_text("8:0 rbytes=512 wbytes=4096 rios=100 wios=1 dbytes=5 dios=23\n")
    stats = StatsV2()
    stats.add_controller(ControllerPath(PATH_V2, str(tmp_path), is_v2=True), "io")
    expected = IOStat(
        read=IOMetric(bytes=512, ios=100),
        write=IOMetric(bytes=4096, ios=1),
        discarded=IOMetric(bytes=5, ios=23),
    )
    assert list(stats.io.stats.values()) == [expected]
    assert stats.io.path == PATH_V2


def test_root_controller_id(tmp_path):
    stats = StatsV1()
    stats.add_controller(ControllerPath("/", str(tmp_path)), "cpu")
    assert stats.cpu.id == "/"
    assert stats.cpu.path == "/"