# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Translation of paths seen from a mount namespace (e.g. a container) into paths
seen from the host's root mount namespace.
"""
from __future__ import annotations

import logging
import posixpath
from typing import Optional

from sofind.monitoring.mounts import get_mount_info, is_path_prefix, MountTable
from sofind.monitoring.procfs import init_pid_path
from sofind.schemas.mount import MountRecord

logger = logging.getLogger(__name__)


def find_host_mount(
    ns_mount: MountRecord, host_mounts: MountTable
) -> Optional[MountRecord]:
    """The first host mount of the same filesystem whose root contains the root of
    `ns_mount`. A host mount identical to `ns_mount` is preferred, so that a table
    resolved against itself maps every path to itself.

    Only host roots at or above the namespace root are considered; a host mount
    exposing a strict subtree of `ns_mount.root` is not a match.
    """
    if ns_mount in host_mounts.mounts:
        return ns_mount
    for host_mount in host_mounts:
        if host_mount.device_id == ns_mount.device_id and is_path_prefix(
            host_mount.root, ns_mount.root
        ):
            return host_mount
    return None


def resolve(
    path: str,
    ns_mounts: Optional[MountTable],
    host_mounts: Optional[MountTable],
) -> Optional[str]:
    """Resolve `path`, as seen by a process whose mount table is `ns_mounts`, to the
    path of the same file as seen from `host_mounts`.

    Example: a container rootfs is the host directory /var/lib/containers/X/diff
    bind mounted on the container's /. Then /etc/lib.so in the container is
    /var/lib/containers/X/diff/etc/lib.so on the host.

    Returns None when the file is not reachable from the host's view, e.g. it lives
    on a filesystem which is not mounted on the host at all.
    """
    if not ns_mounts or not host_mounts:
        return None

    ns_mount = ns_mounts.get_mount(path)
    if ns_mount is None:
        return None
    ns_rel_path = posixpath.relpath(path, ns_mount.mount_point)

    host_mount = find_host_mount(ns_mount, host_mounts)
    if host_mount is None:
        return None

    # where the namespace's view of the filesystem starts, relative to the host's
    root_rel_path = posixpath.relpath(ns_mount.root, host_mount.root)
    return posixpath.normpath(
        posixpath.join(host_mount.mount_point, root_rel_path, ns_rel_path)
    )


class PathResolver:
    """Resolves namespaced paths against a fixed host mount table."""

    def __init__(self, host_mounts: Optional[MountTable]) -> None:
        self.host_mounts = host_mounts

    @classmethod
    def from_proc_root(cls, proc_root: str) -> PathResolver:
        """Use the mounts of pid 1 under `proc_root` as the host view."""
        pid_path = init_pid_path(proc_root)
        host_mounts = get_mount_info(pid_path)
        if not host_mounts:
            logger.warning(
                "no mounts found for %s; no path will be resolved", pid_path
            )
        return cls(host_mounts)

    def resolve(self, path: str, ns_mounts: Optional[MountTable]) -> Optional[str]:
        return resolve(path, ns_mounts, self.host_mounts)
