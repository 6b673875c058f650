# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from dataclasses import dataclass


@dataclass(frozen=True)
class MountRecord:
    """One line of /proc/<pid>/mountinfo, reduced to what path translation needs.

    https://man7.org/linux/man-pages/man5/proc.5.html

        36 35 98:0 /mnt1 /mnt2 rw,noatime master:1 - ext3 /dev/root rw,errors=continue
        (1)(2)(3)   (4)   (5)      (6)      (7)   (8) (9)   (10)         (11)

    (3) major:minor of the filesystem, (4) root of the mount within that
    filesystem, (5) mount point relative to the process's root.
    """

    device_id: str
    root: str
    mount_point: str
