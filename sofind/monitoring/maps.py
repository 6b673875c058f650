# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Shared libraries mapped by a process, from /proc/<pid>/maps.

Example:
7f135146b000-7f135147a000 r--p 00000000 fd:00 268743 /usr/lib/x86_64-linux-gnu/libm-2.31.so
7f135147a000-7f1351521000 r-xp 0000f000 fd:00 268743 /usr/lib/x86_64-linux-gnu/libm-2.31.so
7f1351521000-7f13515b8000 r--p 000b6000 fd:00 268743 /usr/lib/x86_64-linux-gnu/libm-2.31.so
7f13515b8000-7f13515b9000 r--p 0014c000 fd:00 268743 /usr/lib/x86_64-linux-gnu/libm-2.31.so
7ffe712a4000-7ffe712c5000 rw-p 00000000 00:00 0                   [stack]

yields {"/usr/lib/x86_64-linux-gnu/libm-2.31.so"}.
"""
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import AbstractSet, Iterable, Optional, Pattern, Set, Union

from typing_extensions import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

MAPS = "maps"

# address perms offset dev inode pathname
_PATHNAME_FIELD_IDX = 5
_DELETED_SUFFIX = " (deleted)"

# matches libc.so, libc.so.6 and libc-2.33.so but not locale-archive
ALL_LIBRARIES: Pattern[str] = re.compile(r"\.so($|\.)")


@runtime_checkable
class PathnameMatcher(Protocol):
    def matches(self, pathname: str) -> bool: ...


@dataclass(frozen=True)
class RegexMatcher:
    pattern: Pattern[str]

    def matches(self, pathname: str) -> bool:
        return self.pattern.search(pathname) is not None


LibraryFilter = Union[str, Pattern[str], PathnameMatcher]


def as_matcher(filter: Optional[LibraryFilter]) -> Optional[PathnameMatcher]:
    """Raises re.error for a string which is not a valid regular expression."""
    if filter is None or isinstance(filter, PathnameMatcher):
        return filter
    if isinstance(filter, str):
        return RegexMatcher(re.compile(filter))
    if isinstance(filter, re.Pattern):
        return RegexMatcher(filter)
    raise TypeError(
        f"Expected a regex or a PathnameMatcher, but got {type(filter).__name__}"
    )


def as_pathname(line: str) -> Optional[str]:
    """The backing file of one mapping, or None for anonymous and pseudo mappings
    such as [heap], [stack] or [vdso].
    """
    fields = line.split(maxsplit=_PATHNAME_FIELD_IDX)
    if len(fields) <= _PATHNAME_FIELD_IDX:
        return None
    pathname = fields[_PATHNAME_FIELD_IDX].rstrip("\n")
    if pathname.endswith(_DELETED_SUFFIX):
        pathname = pathname[: -len(_DELETED_SUFFIX)]
    if not pathname.startswith("/"):
        return None
    return pathname


def parse_maps(
    lines: Iterable[str], filter: Optional[LibraryFilter] = None
) -> Set[str]:
    """Distinct pathnames mapped across all `lines`. If `filter` is None every
    file-backed mapping is kept.
    """
    matcher = as_matcher(filter)
    pathnames = set()
    for line in lines:
        pathname = as_pathname(line)
        if pathname is not None:
            pathnames.add(pathname)

    if matcher is None:
        return pathnames
    return {p for p in pathnames if matcher.matches(p)}


def get_shared_libraries(
    pid_path: str, filter: Optional[LibraryFilter] = None
) -> AbstractSet[str]:
    """Read <pid_path>/maps. Empty if it cannot be read, e.g. the process exited."""
    path = posixpath.join(pid_path, MAPS)
    try:
        with open(path, "r", errors="surrogateescape") as f:
            return parse_maps(f, filter)
    except OSError as e:
        logger.debug("could not read %s: %s", path, e)
        return frozenset()
