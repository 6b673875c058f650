# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import os
import posixpath
from typing import Literal, Optional, Pattern

import click

from sofind.monitoring.cli.find import echo_libraries, get_filter, setup_logging
from sofind.monitoring.click import (
    all_libraries_option,
    filter_option,
    log_folder_option,
    log_level_option,
    proc_root_option,
    stderr_option,
)
from sofind.monitoring.finder import Finder
from sofind.monitoring.procfs import host_proc
from typeguard import typechecked


@click.command()
@click.argument("pid", type=click.IntRange(min=0))
@proc_root_option
@filter_option
@all_libraries_option
@log_level_option
@log_folder_option
@stderr_option
@typechecked
def main(
    pid: int,
    proc_root: Optional[str],
    filter: Optional[Pattern[str]],
    all_libraries: bool,
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    log_folder: str,
    stderr: bool,
) -> None:
    """Print the shared libraries mapped into memory by PID."""
    logger = setup_logging(log_folder, log_level, stderr)
    root = host_proc() if proc_root is None else proc_root
    pid_path = posixpath.join(root, str(pid))
    if not os.path.isdir(pid_path):
        raise click.UsageError(f"No such process: {pid_path}")

    logger.info(f"finding libraries of {pid_path}")
    libraries = Finder(pid_path).find(get_filter(filter, all_libraries))
    logger.info(f"found {len(libraries)} libraries for {pid_path}")
    echo_libraries(libraries)
