# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Location of the process-information pseudo-filesystem."""
from __future__ import annotations

import os
import posixpath
from typing import Mapping, Optional

from pydantic import BaseModel

from sofind.monitoring.coerce import parse_pid

DEFAULT_HOST_PROC = "/proc"
INIT_PID = 1


class ProcfsConfig(BaseModel):
    """Where to find procfs on this host.

    Useful when running inside a container with the host's /proc bind mounted
    somewhere else, e.g. HOST_PROC=/host/proc.
    """

    host_proc: str = DEFAULT_HOST_PROC

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> ProcfsConfig:
        """Construct from environment variables.

        The convention is that config values are upper-cased, e.g. 'host_proc' is
        set with 'HOST_PROC=/host/proc'. Unset or empty variables keep the default.
        """
        kwargs = {}
        for f in cls.model_fields:
            value = environ.get(f.upper())
            if value:
                kwargs[f] = value
        return cls(**kwargs)


def host_proc(*parts: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Join `parts` onto the host procfs root, honoring HOST_PROC."""
    config = ProcfsConfig.from_env(os.environ if environ is None else environ)
    return posixpath.join(config.host_proc, *parts)


def real_proc_root(proc_root: str) -> str:
    """/proc/<pid> passed directly maps back to /proc."""
    normalized = posixpath.normpath(proc_root)
    if parse_pid(posixpath.basename(normalized)) is not None:
        return posixpath.dirname(normalized)
    return normalized


def init_pid_path(proc_root: str) -> str:
    return posixpath.join(real_proc_root(proc_root), str(INIT_PID))
