# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Discovery of the shared libraries in use on a host, per mount namespace.

Every /proc/<pid>/maps is read to learn which libraries each process has mapped,
and each library path is translated to the path visible from the host with the
help of /proc/<pid>/mountinfo and /proc/1/mountinfo.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import (
    AbstractSet,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from sofind.monitoring.maps import (
    as_matcher,
    get_shared_libraries,
    LibraryFilter,
    PathnameMatcher,
)
from sofind.monitoring.mounts import get_mount_info, MountTable
from sofind.monitoring.path_resolver import PathResolver
from sofind.monitoring.procfs import host_proc
from sofind.monitoring.walker import iter_pids
from sofind.schemas.library import Library, LibraryKey, NamespaceIdentity
from sofind.schemas.process import ProcessView

logger = logging.getLogger(__name__)

FnGetMountInfo = Callable[[str], Optional[MountTable]]
_ScannedProcess = Tuple[ProcessView, AbstractSet[str], Optional[MountTable]]


class MountTableCache:
    """Mount tables keyed by mount namespace, loaded at most once per namespace.

    Safe to share between threads. Tables that could not be read are not cached so
    the next process in the same namespace gets another chance.
    """

    def __init__(self, get_mount_info: FnGetMountInfo = get_mount_info) -> None:
        self._get_mount_info = get_mount_info
        self._lock = threading.Lock()
        self._tables: Dict[NamespaceIdentity, MountTable] = {}

    def get(self, mnt_ns: NamespaceIdentity, pid_path: str) -> Optional[MountTable]:
        with self._lock:
            table = self._tables.get(mnt_ns)
            if table is not None:
                return table
            table = self._get_mount_info(pid_path)
            # some /proc/<pid>/mountinfo can be empty
            if table:
                self._tables[mnt_ns] = table
            return table

    def __len__(self) -> int:
        with self._lock:
            return len(self._tables)


class Finder:
    def __init__(self, proc_root: str) -> None:
        self.proc_root = proc_root
        self.path_resolver = PathResolver.from_proc_root(proc_root)

    def find(
        self,
        filter: Optional[LibraryFilter] = None,
        *,
        max_workers: Optional[int] = None,
        cache: Optional[MountTableCache] = None,
    ) -> List[Library]:
        """Find the libraries matching `filter`, one per (pathname, mount namespace).

        Libraries whose host path cannot be resolved are left out.

        Parameters:
            filter: Regex or PathnameMatcher selecting pathnames. None keeps every
                file-backed mapping.
            max_workers: Read processes on this many threads. None or 1 reads
                them on the calling thread.
            cache: Mount tables to reuse. A fresh cache is used by default.
        """
        matcher = as_matcher(filter)
        if cache is None:
            cache = MountTableCache()

        libraries: Dict[LibraryKey, Library] = {}
        unresolved: Set[LibraryKey] = set()
        for process, pathnames, ns_mounts in self._scan(matcher, cache, max_workers):
            for pathname in sorted(pathnames):
                key = LibraryKey(pathname=pathname, mnt_ns=process.mnt_ns)
                library = libraries.get(key)
                if library is not None:
                    library.add_pid_path(process.path)
                    continue
                if key in unresolved:
                    continue

                host_path = self.path_resolver.resolve(pathname, ns_mounts)
                if host_path is None:
                    logger.debug(
                        "could not resolve %s for %s", pathname, process.path
                    )
                    # a missing table may show up for the next process in this namespace
                    if ns_mounts:
                        unresolved.add(key)
                    continue

                libraries[key] = Library(
                    key=key, host_path=host_path, pids_path=[process.path]
                )

        logger.debug(
            "found %d libraries in %d mount namespaces under %s",
            len(libraries),
            len(cache),
            self.proc_root,
        )
        return list(libraries.values())

    def _scan(
        self,
        matcher: Optional[PathnameMatcher],
        cache: MountTableCache,
        max_workers: Optional[int],
    ) -> Iterator[_ScannedProcess]:
        def scan_one(process: ProcessView) -> _ScannedProcess:
            pathnames = get_shared_libraries(process.path, matcher)
            if not pathnames:
                return process, pathnames, None
            return process, pathnames, cache.get(process.mnt_ns, process.path)

        processes = iter_pids(self.proc_root)
        if max_workers is None or max_workers <= 1:
            for process in processes:
                yield scan_one(process)
            return

        with ThreadPoolExecutor(max_workers=max_workers) as e:
            yield from e.map(scan_one, processes)


def find_proc(
    proc_root: str, filter: Optional[LibraryFilter] = None
) -> List[Library]:
    """Host-resolved paths of all shared libraries (per mount namespace) matching
    `filter`, found by reading every <proc_root>/<pid>/maps and
    <proc_root>/<pid>/mountinfo. If `filter` is None, every file-backed mapping is
    reported.
    """
    return Finder(proc_root).find(filter)


def find(filter: Optional[LibraryFilter] = None) -> List[Library]:
    """Like `find_proc`, over the host's procfs (see HOST_PROC)."""
    return find_proc(host_proc(), filter)


def from_pid(pid: int, filter: Optional[LibraryFilter] = None) -> List[Library]:
    """Shared libraries matching `filter` that are mapped into memory by `pid`."""
    return find_proc(host_proc(str(pid)), filter)
