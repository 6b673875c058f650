# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def get_version() -> str:
    if "__file__" in globals():
        root = Path(__file__).absolute().parent
        try:
            with open(root / "version.txt") as f:
                return f.read().strip()
        except OSError:
            logger.debug("Could not find version.txt file", exc_info=True)

    env_version = os.environ.get("SOFIND_VERSION")
    if env_version is not None:
        return env_version

    # do not fail due to not able to find version
    return "unknown"


__version__ = get_version()
