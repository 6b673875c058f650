# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import logging
import os
import posixpath
from typing import Callable, Iterator, List, Optional, Tuple

from sofind.monitoring.coerce import parse_pid
from sofind.monitoring.ns import get_mnt_ns
from sofind.schemas.library import NamespaceIdentity
from sofind.schemas.process import ProcessView

logger = logging.getLogger(__name__)

FnGetMntNs = Callable[[str], Optional[NamespaceIdentity]]


def iter_pids(
    proc_root: str, get_ns: FnGetMntNs = get_mnt_ns
) -> Iterator[ProcessView]:
    """Yield every /proc/<pid> directory under `proc_root`, in pid order.

    Per-thread directories (/proc/<pid>/task/<tid>) and anything that is not a
    numeric directory are never visited. If `proc_root` itself is a /proc/<pid>
    directory, only that process is yielded. Entries which disappear or cannot be
    identified while walking are skipped.
    """
    root = posixpath.normpath(proc_root)
    if not os.path.isdir(root):
        logger.debug("%s is not a directory", root)
        return

    pid = parse_pid(posixpath.basename(root))
    if pid is not None:
        view = _as_process_view(root, pid, get_ns)
        if view is not None:
            yield view
        return

    for pid, path in _list_pid_dirs(root):
        view = _as_process_view(path, pid, get_ns)
        if view is not None:
            yield view


def _list_pid_dirs(root: str) -> List[Tuple[int, str]]:
    pid_dirs = []
    try:
        with os.scandir(root) as it:
            for entry in it:
                pid = parse_pid(entry.name)
                if pid is None:
                    continue
                try:
                    if not entry.is_dir(follow_symlinks=False):
                        continue
                except OSError:
                    continue
                pid_dirs.append((pid, posixpath.join(root, entry.name)))
    except OSError as e:
        logger.debug("could not list %s: %s", root, e)
    return sorted(pid_dirs)


def _as_process_view(
    path: str, pid: int, get_ns: FnGetMntNs
) -> Optional[ProcessView]:
    mnt_ns = get_ns(path)
    if mnt_ns is None:
        logger.debug("skipping %s: unknown mount namespace", path)
        return None
    return ProcessView(path=path, pid=pid, mnt_ns=mnt_ns)
