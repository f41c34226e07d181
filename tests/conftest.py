"""Pytest configuration for test isolation.

The vetted store defaults to ``./vetted-rules.json`` under the working
directory. Tests that construct a store without an explicit path would
otherwise share (and pollute) that file, so an autouse fixture points
``PAYEE_VETTING_RULES_PATH`` at the test's own temporary directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_store_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "vetted-rules.json"
    monkeypatch.setenv("PAYEE_VETTING_RULES_PATH", os.fspath(path))
    return path


@pytest.fixture
def store_path(_isolate_store_path: Path) -> Path:
    return _isolate_store_path
