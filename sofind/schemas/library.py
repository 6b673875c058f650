# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class NamespaceIdentity:
    """(st_dev, st_ino) of a process's /proc/<pid>/ns/mnt handle."""

    device: int
    inode: int


@dataclass(frozen=True)
class LibraryKey:
    # path of the library as seen by the process
    pathname: str
    mnt_ns: NamespaceIdentity


@dataclass
class Library:
    key: LibraryKey
    host_path: str
    # /proc/<pid> paths of every process mapping this library, first seen first
    pids_path: List[str] = field(default_factory=list)

    @property
    def pathname(self) -> str:
        return self.key.pathname

    @property
    def mnt_ns(self) -> NamespaceIdentity:
        return self.key.mnt_ns

    def add_pid_path(self, pid_path: str) -> None:
        if pid_path not in self.pids_path:
            self.pids_path.append(pid_path)
