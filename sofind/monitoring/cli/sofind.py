# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""A single entrypoint into the sofind commands.

This file is intentionally lightweight and should not include any complex logic.
"""

import click

from sofind._version import __version__
from sofind.monitoring.cli import find, from_pid
from sofind.monitoring.click import toml_config_option


@click.group(epilog=f"sofind Version: {__version__}")
@toml_config_option("sofind")
@click.version_option(__version__)
def main() -> None:
    """Shared library discovery across mount namespaces."""


main.add_command(find.main, name="find")
main.add_command(from_pid.main, name="from_pid")

if __name__ == "__main__":
    main()
