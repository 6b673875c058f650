# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

import pytest

from sofind.monitoring.finder import (
    find,
    find_proc,
    Finder,
    from_pid,
    MountTableCache,
)
from sofind.monitoring.maps import ALL_LIBRARIES, LibraryFilter
from sofind.monitoring.mounts import get_mount_info, MountTable
from sofind.schemas.library import Library, LibraryKey, NamespaceIdentity
from sofind.tests.fakes import FakeProcfs, maps, mountinfo

LIBC = "/usr/lib/libc.so"
LIBSSL = "/usr/lib/libssl.so.3"
BASH = "/usr/bin/bash"
ROOTFS = "/var/lib/containers/X/diff"

HOST_MOUNTS = mountinfo([("A", "/", "/"), ("0:22", "/", "/proc")])
CONTAINER_MOUNTS = mountinfo([("A", ROOTFS, "/"), ("0:55", "/", "/proc")])

_Summary = Set[Tuple[LibraryKey, str, FrozenSet[str]]]


def summarize(libraries: List[Library]) -> _Summary:
    return {(lib.key, lib.host_path, frozenset(lib.pids_path)) for lib in libraries}


def by_key(libraries: List[Library]) -> Dict[LibraryKey, Library]:
    result = {lib.key: lib for lib in libraries}
    assert len(result) == len(libraries)
    return result


@pytest.fixture
def host_and_container(procfs: FakeProcfs) -> FakeProcfs:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC]), mountinfo=HOST_MOUNTS)
    procfs.add_process(
        138039, mnt_ns="container", maps=maps([LIBC]), mountinfo=CONTAINER_MOUNTS
    )
    return procfs


def test_find_host_and_container(host_and_container: FakeProcfs) -> None:
    procfs = host_and_container

    libraries = find_proc(str(procfs.root), None)

    assert summarize(libraries) == {
        (
            LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("host")),
            LIBC,
            frozenset({str(procfs.root / "1")}),
        ),
        (
            LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("container")),
            ROOTFS + LIBC,
            frozenset({str(procfs.root / "138039")}),
        ),
    }


def test_find_is_deterministic(host_and_container: FakeProcfs) -> None:
    finder = Finder(str(host_and_container.root))

    assert summarize(finder.find()) == summarize(finder.find())


def test_same_namespace_is_deduplicated(procfs: FakeProcfs) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC]), mountinfo=HOST_MOUNTS)
    procfs.add_process(
        200, mnt_ns="container", maps=maps([LIBC, BASH]), mountinfo=CONTAINER_MOUNTS
    )
    procfs.add_process(
        201, mnt_ns="container", maps=maps([LIBC]), mountinfo=CONTAINER_MOUNTS
    )

    libraries = by_key(find_proc(str(procfs.root)))

    container_libc = libraries[
        LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("container"))
    ]
    assert container_libc.host_path == ROOTFS + LIBC
    assert container_libc.pids_path == [
        str(procfs.root / "200"),
        str(procfs.root / "201"),
    ]
    assert len(libraries) == 3


def test_different_namespaces_are_kept_apart(procfs: FakeProcfs) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([BASH]), mountinfo=HOST_MOUNTS)
    procfs.add_process(
        300,
        mnt_ns="c1",
        maps=maps([LIBC]),
        mountinfo=mountinfo([("A", "/containers/c1", "/")]),
    )
    procfs.add_process(
        301,
        mnt_ns="c2",
        maps=maps([LIBC]),
        mountinfo=mountinfo([("A", "/containers/c2", "/")]),
    )

    libraries = by_key(find_proc(str(procfs.root), ALL_LIBRARIES))

    assert {k: lib.host_path for k, lib in libraries.items()} == {
        LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("c1")): "/containers/c1"
        + LIBC,
        LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("c2")): "/containers/c2"
        + LIBC,
    }


@pytest.mark.parametrize(
    "filter, expected",
    [
        (None, {LIBC, LIBSSL, BASH}),
        (ALL_LIBRARIES, {LIBC, LIBSSL}),
        ("ssl", {LIBSSL}),
    ],
)
def test_find_with_filter(
    procfs: FakeProcfs, filter: Optional[LibraryFilter], expected: Set[str]
) -> None:
    procfs.add_process(
        1, mnt_ns="host", maps=maps([LIBC, LIBSSL, BASH]), mountinfo=HOST_MOUNTS
    )

    assert {lib.pathname for lib in find_proc(str(procfs.root), filter)} == expected


def test_unresolved_libraries_are_dropped(procfs: FakeProcfs) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC]), mountinfo=HOST_MOUNTS)
    procfs.add_process(
        400,
        mnt_ns="container",
        maps=maps([LIBC, "/proc/self/exe-copy.so"]),
        mountinfo=CONTAINER_MOUNTS,
    )
    procfs.add_process(
        401,
        mnt_ns="container",
        maps=maps(["/proc/self/exe-copy.so"]),
        mountinfo=CONTAINER_MOUNTS,
    )

    libraries = find_proc(str(procfs.root))

    assert {(lib.pathname, lib.host_path) for lib in libraries} == {
        (LIBC, LIBC),
        (LIBC, ROOTFS + LIBC),
    }


def test_missing_host_mounts_yields_nothing(procfs: FakeProcfs) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC]), mountinfo=None)
    procfs.add_process(
        2, mnt_ns="container", maps=maps([LIBC]), mountinfo=CONTAINER_MOUNTS
    )

    assert find_proc(str(procfs.root)) == []


def test_exited_processes_are_skipped(procfs: FakeProcfs) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC]), mountinfo=HOST_MOUNTS)
    # maps and mountinfo gone: the process exited while walking
    procfs.add_process(500, mnt_ns="container", maps=None, mountinfo=None)
    # mountinfo gone, but a sibling in the same namespace still has it
    procfs.add_process(501, mnt_ns="container", maps=maps([LIBC]), mountinfo=None)
    procfs.add_process(
        502, mnt_ns="container", maps=maps([LIBC]), mountinfo=CONTAINER_MOUNTS
    )

    libraries = by_key(find_proc(str(procfs.root)))

    container_libc = libraries[
        LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("container"))
    ]
    assert container_libc.host_path == ROOTFS + LIBC
    assert container_libc.pids_path == [str(procfs.root / "502")]


def test_from_pid_directory(host_and_container: FakeProcfs) -> None:
    procfs = host_and_container

    libraries = find_proc(str(procfs.root / "138039"))

    assert summarize(libraries) == {
        (
            LibraryKey(pathname=LIBC, mnt_ns=procfs.identity("container")),
            ROOTFS + LIBC,
            frozenset({str(procfs.root / "138039")}),
        ),
    }


def test_find_and_from_pid_use_host_proc(
    host_and_container: FakeProcfs, monkeypatch: pytest.MonkeyPatch
) -> None:
    procfs = host_and_container
    monkeypatch.setenv("HOST_PROC", str(procfs.root))

    assert {lib.host_path for lib in find()} == {LIBC, ROOTFS + LIBC}
    assert {lib.host_path for lib in from_pid(138039)} == {ROOTFS + LIBC}
    assert {lib.host_path for lib in from_pid(1, ALL_LIBRARIES)} == {LIBC}
    assert from_pid(404) == []


def test_mount_tables_are_read_once_per_namespace(procfs: FakeProcfs) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC]), mountinfo=HOST_MOUNTS)
    for pid in range(600, 605):
        procfs.add_process(
            pid, mnt_ns="container", maps=maps([LIBC, BASH]), mountinfo=CONTAINER_MOUNTS
        )
    loaded: List[str] = []

    def counting_get_mount_info(pid_path: str) -> Optional[MountTable]:
        loaded.append(pid_path)
        return get_mount_info(pid_path)

    cache = MountTableCache(counting_get_mount_info)
    libraries = Finder(str(procfs.root)).find(cache=cache)

    assert loaded == [str(procfs.root / "1"), str(procfs.root / "600")]
    assert len(cache) == 2
    assert len(libraries) == 3


def test_mount_table_cache_retries_missing_tables() -> None:
    mnt_ns = NamespaceIdentity(device=4, inode=4026531840)
    tables = iter([None, MountTable(), MountTable(mounts=[])])
    loaded: List[str] = []

    def get_mount_info(pid_path: str) -> Optional[MountTable]:
        loaded.append(pid_path)
        return next(tables, None)

    cache = MountTableCache(get_mount_info)

    assert cache.get(mnt_ns, "/proc/1") is None
    assert not cache.get(mnt_ns, "/proc/2")
    assert len(cache) == 0
    assert loaded == ["/proc/1", "/proc/2"]


@pytest.mark.parametrize("max_workers", [None, 1, 2, 8])
def test_find_with_workers(procfs: FakeProcfs, max_workers: Optional[int]) -> None:
    procfs.add_process(1, mnt_ns="host", maps=maps([LIBC, BASH]), mountinfo=HOST_MOUNTS)
    for pid in range(700, 720):
        procfs.add_process(
            pid,
            mnt_ns=f"c{pid % 3}",
            maps=maps([LIBC, LIBSSL]),
            mountinfo=mountinfo([("A", f"/containers/c{pid % 3}", "/")]),
        )
    finder = Finder(str(procfs.root))

    assert summarize(finder.find(max_workers=max_workers)) == summarize(finder.find())
    assert len(finder.find(max_workers=max_workers)) == 2 + 3 * 2
