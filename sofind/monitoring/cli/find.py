# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import json
import logging
import os
from dataclasses import asdict
from functools import partial
from typing import Any, Dict, Iterable, List, Literal, Optional, Pattern

import click

from sofind.monitoring.click import (
    all_libraries_option,
    filter_option,
    log_folder_option,
    log_level_option,
    proc_root_option,
    stderr_option,
    workers_option,
)
from sofind.monitoring.finder import Finder
from sofind.monitoring.maps import ALL_LIBRARIES, LibraryFilter
from sofind.monitoring.procfs import host_proc
from sofind.monitoring.utils.monitor import init_logger
from sofind.schemas.library import Library
from typeguard import typechecked

LOGGER_NAME = "sofind"

json_dumps_compact = partial(json.dumps, separators=(",", ":"))


def as_json_dict(library: Library) -> Dict[str, Any]:
    return {
        "pathname": library.pathname,
        "mnt_ns": asdict(library.mnt_ns),
        "host_path": library.host_path,
        "pids_path": list(library.pids_path),
    }


def sorted_libraries(libraries: Iterable[Library]) -> List[Library]:
    return sorted(
        libraries,
        key=lambda lib: (lib.pathname, lib.mnt_ns.device, lib.mnt_ns.inode),
    )


def echo_libraries(libraries: Iterable[Library]) -> None:
    for library in sorted_libraries(libraries):
        click.echo(json_dumps_compact(as_json_dict(library)))


def get_filter(
    filter: Optional[Pattern[str]], all_libraries: bool
) -> Optional[LibraryFilter]:
    if filter is not None:
        return filter
    return ALL_LIBRARIES if all_libraries else None


def setup_logging(
    log_folder: str,
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    stderr: bool,
) -> logging.Logger:
    logger, _ = init_logger(
        logger_name=LOGGER_NAME,
        log_dir=os.path.join(log_folder, LOGGER_NAME + "_logs"),
        log_name=LOGGER_NAME + ".log",
        log_stderr=stderr,
        log_level=getattr(logging, log_level),
    )
    return logger


@click.command()
@proc_root_option
@filter_option
@all_libraries_option
@workers_option
@log_level_option
@log_folder_option
@stderr_option
@typechecked
def main(
    proc_root: Optional[str],
    filter: Optional[Pattern[str]],
    all_libraries: bool,
    workers: int,
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    log_folder: str,
    stderr: bool,
) -> None:
    """Print the shared libraries in use by every process, one JSON object per
    library and mount namespace, with the path of the library on the host.
    """
    logger = setup_logging(log_folder, log_level, stderr)
    root = host_proc() if proc_root is None else proc_root
    logger.info(f"finding libraries under {root}")

    libraries = Finder(root).find(
        get_filter(filter, all_libraries), max_workers=workers
    )
    logger.info(f"found {len(libraries)} libraries under {root}")
    echo_libraries(libraries)
