"""Shared fixtures: sandbox layouts."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def sandbox_dir(tmp_path: Path) -> Path:
    d = tmp_path / "sandbox"
    d.mkdir()
    return d.resolve()


@pytest.fixture
def outside_file(tmp_path: Path) -> Path:
    """An existing file next to, but not inside, the sandbox."""
    d = tmp_path / "outside"
    d.mkdir()
    f = d / "secret.txt"
    f.write_text("secret", encoding="utf-8")
    return f.resolve()
