# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from pathlib import Path

import pytest

from sofind.tests.fakes import FakeProcfs


@pytest.fixture
def procfs(tmp_path: Path) -> FakeProcfs:
    return FakeProcfs(base=tmp_path)


@pytest.fixture(autouse=True)
def no_host_proc(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("HOST_PROC", raising=False)

