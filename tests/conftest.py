"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from procwatch.config import reload_config  # noqa: E402

# Shell scripts used as child processes
SCRIPTS_DIR = PROJECT_ROOT / "tests" / "fixtures" / "scripts"


@pytest.fixture
def scripts_dir() -> Path:
    """Directory holding the fixture shell scripts."""
    return SCRIPTS_DIR


@pytest.fixture
def script(scripts_dir: Path):
    """Build a command running one fixture script through sh."""

    def _script(name: str, *args: str) -> list[str]:
        return ["sh", str(scripts_dir / name), *args]

    return _script


@pytest.fixture(autouse=True)
def fresh_config():
    """Reload the configuration around every test so env patches do not leak."""
    reload_config()
    yield
    reload_config()
