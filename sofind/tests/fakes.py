# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from sofind.schemas.library import NamespaceIdentity

DATA_DIR = Path(__file__).parent / "data"

# (device id, root, mount point)
Mount = Tuple[str, str, str]


def data_lines(name: str) -> List[str]:
    with (DATA_DIR / name).open() as f:
        return f.readlines()


def mountinfo(mounts: Sequence[Mount]) -> str:
    """Render /proc/<pid>/mountinfo contents for the given mounts."""
    lines = []
    for i, (device_id, root, mount_point) in enumerate(mounts, start=20):
        lines.append(
            f"{i} 1 {device_id} {root} {mount_point} rw,relatime shared:{i} - ext4 /dev/vda{i} rw\n"
        )
    return "".join(lines)


def maps(pathnames: Sequence[str], regions: int = 4) -> str:
    """Render /proc/<pid>/maps contents mapping each pathname `regions` times, along
    with a few anonymous mappings.
    """
    lines = ["55d0b9c3e000-55d0b9dc3000 rw-p 00000000 00:00 0    [heap]\n"]
    address = 0x7F0000000000
    for inode, pathname in enumerate(pathnames, start=1000):
        for region in range(regions):
            lines.append(
                f"{address:x}-{address + 0x1000:x} r--p {region * 0x1000:08x} fd:00 {inode}    {pathname}\n"
            )
            address += 0x1000
        lines.append(f"{address:x}-{address + 0x1000:x} rw-p 00000000 00:00 0\n")
        address += 0x1000
    lines.append("7ffe712a4000-7ffe712c5000 rw-p 00000000 00:00 0    [stack]\n")
    return "".join(lines)


@dataclass
class FakeProcfs:
    """A /proc look-alike on disk.

    Each process gets maps, mountinfo and an ns/mnt symlink pointing at one file per
    mount namespace, so that processes in the same namespace stat identically.
    """

    base: Path

    @property
    def root(self) -> Path:
        return self.base / "proc"

    def add_namespace(self, name: str) -> NamespaceIdentity:
        ns_file = self.base / "namespaces" / name
        ns_file.parent.mkdir(parents=True, exist_ok=True)
        ns_file.touch()
        return self.identity(name)

    def identity(self, name: str) -> NamespaceIdentity:
        st = os.stat(self.base / "namespaces" / name)
        return NamespaceIdentity(device=st.st_dev, inode=st.st_ino)

    def add_process(
        self,
        pid: int,
        *,
        mnt_ns: Optional[str],
        maps: Optional[str] = "",
        mountinfo: Optional[str] = None,
    ) -> str:
        pid_dir = self.root / str(pid)
        (pid_dir / "ns").mkdir(parents=True)
        if maps is not None:
            (pid_dir / "maps").write_text(maps)
        if mountinfo is not None:
            (pid_dir / "mountinfo").write_text(mountinfo)
        if mnt_ns is not None:
            self.add_namespace(mnt_ns)
            (pid_dir / "ns" / "mnt").symlink_to(self.base / "namespaces" / mnt_ns)

        # threads look like processes but must never be reported as such
        task_dir = pid_dir / "task" / str(pid)
        task_dir.mkdir(parents=True)
        if maps is not None:
            (task_dir / "maps").write_text(maps)
        return str(pid_dir)
