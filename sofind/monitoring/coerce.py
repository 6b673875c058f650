# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from typing import Any, Dict, Optional

from typeguard import typechecked


def parse_pid(name: str) -> Optional[int]:
    """Return the process id named by a /proc entry, or None for anything that is
    not a plain non-negative decimal integer (e.g. 'self', 'sys', '-1', '+1').
    """
    if not name.isascii() or not name.isdigit():
        return None
    return int(name)


@typechecked
def ensure_dict(x: Any) -> Dict[str, Any]:
    return x
