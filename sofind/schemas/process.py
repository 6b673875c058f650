# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from dataclasses import dataclass

from sofind.schemas.library import NamespaceIdentity


@dataclass(frozen=True)
class ProcessView:
    """A /proc/<pid> directory seen during a single walk."""

    path: str
    pid: int
    mnt_ns: NamespaceIdentity
