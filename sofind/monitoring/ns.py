# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import logging
import os
import posixpath
from typing import Optional

from sofind.schemas.library import NamespaceIdentity

logger = logging.getLogger(__name__)

MNT_NS = posixpath.join("ns", "mnt")


def get_mnt_ns(pid_path: str) -> Optional[NamespaceIdentity]:
    """Identify the mount namespace of the process at `pid_path`.

    Processes sharing a mount namespace get equal identities. None if the handle
    cannot be opened, e.g. the process exited or belongs to another user.
    """
    path = posixpath.join(pid_path, MNT_NS)
    try:
        fd = os.open(path, os.O_RDONLY | os.O_CLOEXEC)
    except OSError as e:
        logger.debug("could not open %s: %s", path, e)
        return None
    try:
        stat = os.fstat(fd)
    except OSError as e:
        logger.debug("could not stat %s: %s", path, e)
        return None
    finally:
        os.close(fd)
    return NamespaceIdentity(device=stat.st_dev, inode=stat.st_ino)
