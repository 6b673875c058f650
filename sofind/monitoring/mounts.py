# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Parsing of /proc/<pid>/mountinfo.

https://www.kernel.org/doc/html/latest/filesystems/proc.html#proc-pid-mountinfo-information-about-mounts
"""
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

from sofind.schemas.mount import MountRecord

logger = logging.getLogger(__name__)

MOUNTINFO = "mountinfo"

# mount ID, parent ID, major:minor, root, mount point, mount options, zero or more
# optional fields, separator, filesystem type, mount source, super options
_MIN_FIELDS = 10
_DEVICE_ID_IDX = 2
_ROOT_IDX = 3
_MOUNT_POINT_IDX = 4

# the kernel escapes space, tab, newline and backslash as \ooo
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def unescape(field: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def is_path_prefix(prefix: str, path: str) -> bool:
    """Whether `prefix` is `path` or one of its ancestor directories.

    >>> is_path_prefix("/proc", "/proc/1/maps")
    True
    >>> is_path_prefix("/proc", "/procfoo")
    False
    """
    if not prefix.startswith("/") or not path.startswith("/"):
        return False
    if prefix == path:
        return True
    if not prefix.endswith("/"):
        prefix += "/"
    return path.startswith(prefix)


@dataclass
class MountTable:
    """Mounts visible from one mount namespace, in mountinfo order."""

    mounts: List[MountRecord] = field(default_factory=list)

    def __iter__(self) -> Iterator[MountRecord]:
        return iter(self.mounts)

    def __len__(self) -> int:
        return len(self.mounts)

    def get_mount(self, path: str) -> Optional[MountRecord]:
        """Return the mount where `path` resides, i.e. the one with the longest
        mount point that is a prefix of `path`.

        When the same mount point appears more than once, the last entry wins since
        later mounts shadow earlier ones.
        """
        match: Optional[MountRecord] = None
        for mount in self.mounts:
            if not is_path_prefix(mount.mount_point, path):
                continue
            if match is None or len(mount.mount_point) >= len(match.mount_point):
                match = mount
        return match


def as_mount_record(line: str) -> Optional[MountRecord]:
    fields = line.split()
    if len(fields) < _MIN_FIELDS:
        return None
    return MountRecord(
        device_id=fields[_DEVICE_ID_IDX],
        root=posixpath.normpath(unescape(fields[_ROOT_IDX])),
        mount_point=posixpath.normpath(unescape(fields[_MOUNT_POINT_IDX])),
    )


def parse_mount_info(lines: Iterable[str]) -> MountTable:
    """Build a mount table, skipping lines that do not look like mountinfo entries."""
    mounts = []
    for line in lines:
        record = as_mount_record(line)
        if record is None:
            if line.strip():
                logger.debug("skipping malformed mountinfo line: %r", line)
            continue
        mounts.append(record)
    return MountTable(mounts=mounts)


def get_mount_info(pid_path: str) -> Optional[MountTable]:
    """Read <pid_path>/mountinfo. None if it cannot be read, e.g. the process exited."""
    path = posixpath.join(pid_path, MOUNTINFO)
    try:
        with open(path, "r", errors="surrogateescape") as f:
            return parse_mount_info(f)
    except OSError as e:
        logger.debug("could not read %s: %s", path, e)
        return None
