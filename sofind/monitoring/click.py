# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Generic, Optional, Pattern, TypeVar, Union

import click
import tomli

from sofind.monitoring.coerce import ensure_dict
from typeguard import typechecked
from typing_extensions import ParamSpec

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/sofind/config.toml"


_Tv = TypeVar("_Tv")


class TypedParamType(click.ParamType, ABC, Generic[_Tv]):
    """Typesafe click.ParamType which is generic in the return type of `convert`"""

    @abstractmethod
    def convert(
        self,
        value: Any,
        param: Optional[click.Parameter],
        ctx: Optional[click.Context],
    ) -> _Tv:
        pass


class Regex(TypedParamType[Pattern[str]]):
    """Compile a regular expression, e.g. for filtering library pathnames."""

    name = "regex"

    def convert(
        self,
        value: Any,
        param: Optional[click.Parameter],
        ctx: Optional[click.Context],
    ) -> Pattern[str]:
        if isinstance(value, re.Pattern):
            return value
        if not isinstance(value, str):
            self.fail(
                f"Expected string, but got {value!r} of type {type(value).__name__}",
                param,
                ctx,
            )
        try:
            return re.compile(value)
        except re.error as e:
            self.fail(f"{value!r} is not a valid regular expression: {e}", param, ctx)


proc_root_option = click.option(
    "--proc-root",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help=(
        "Root of the process-information filesystem. "
        "Defaults to $HOST_PROC, or /proc if unset."
    ),
)

filter_option = click.option(
    "--filter",
    "filter",
    type=Regex(),
    default=None,
    help="Only report library pathnames matching this regex (searched, not anchored).",
)

all_libraries_option = click.option(
    "--all-libraries",
    is_flag=True,
    default=False,
    help=(
        "Only report shared objects, i.e. pathnames matching '\\.so($|\\.)'. "
        "Ignored if --filter is given."
    ),
)

workers_option = click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Number of threads reading processes.",
)

log_level_option = click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default="INFO",
    show_default=True,
    help="Logging verbosity level.",
)

log_folder_option = click.option(
    "--log-folder",
    type=click.Path(file_okay=False),
    default="sofind_logs",
    help="The directory where logs will be stored.",
)

stderr_option = click.option(
    "--stderr",
    is_flag=True,
    default=False,
    help="Whether to log to stderr instead of a file.",
)


_ClickCallback = Callable[[click.Context, click.Parameter, _Tv], None]


def _set_default_map(name: str) -> _ClickCallback[Path]:
    @typechecked
    def cb(ctx: click.Context, param: click.Parameter, path: Path) -> None:
        if not path.exists() or path == Path("/dev/null"):
            return

        logger.info(f"Reading config from {path}...")
        with path.open("rb") as f:
            try:
                conf = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise click.BadParameter(
                    f"{path} does not contain valid TOML.",
                    ctx=ctx,
                    param=param,
                ) from e
        try:
            default_map = ensure_dict(conf[name])
        except KeyError as e:
            raise click.BadParameter(
                f"'{name}' is not a top-level table name in {path}. Valid names: {list(conf.keys())}",
                ctx=ctx,
                param=param,
            ) from e
        logger.info(f"Loaded table '{name}'.")

        ctx.default_map = {**(ctx.default_map or {}), **default_map}

    return cb


_P = ParamSpec("_P")
_R = TypeVar("_R")


def toml_config_option(
    name: str,
    *,
    default_config_path: Union[str, Path] = DEFAULT_CONFIG_PATH,
) -> Callable[[Callable[_P, _R]], Callable[_P, _R]]:
    """Shared decorator for loading default option values from a TOML config file.
    Adds a `--config` option to the given command which takes a path. A non-existent
    path or `/dev/null` is treated as an empty dictionary.

    Precedence (lowest to highest):
    * `default` argument to `click.option`
    * the context's `default_map` setting (unless it is a subcommand; see below)
    * the value in the config file
    * value passed at the command line

    If used on a command group, subtables will configure subcommands, recursively,
    e.g. `[sofind.find]` holds the defaults of `sofind find`.

    Parameters:
        name: The top-level table name in the config file containing the default values
            to use.
        default_config_path: The path from which to load the config if the option is
            omitted at the command line.
    """

    def decorator(f: Callable[_P, _R]) -> Callable[_P, _R]:
        return click.option(
            "--config",
            type=click.Path(dir_okay=False, path_type=Path),
            callback=_set_default_map(name),
            default=default_config_path,
            show_default=True,
            is_eager=True,
            expose_value=False,
            help=(
                f"Load option values from table '{name}' in the given TOML config file. "
                "A non-existent path or '/dev/null' are ignored and treated as empty tables."
            ),
        )(f)

    return decorator
