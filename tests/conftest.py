"""Shared test fixtures for perftoolkit tests."""

import json
import shutil
import sys
from pathlib import Path

import pytest

# Add src to path so tests can import perftoolkit
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from perftoolkit.config import load_config  # noqa: E402

EXAMPLE_PROJECT = Path(__file__).parent.parent / "examples" / "moodle"


@pytest.fixture
def example_project(tmp_path) -> Path:
    """A writable copy of the sample Moodle project (config + feature templates)."""
    target = tmp_path / "moodle"
    shutil.copytree(EXAMPLE_PROJECT, target)
    return target


@pytest.fixture
def example_config(example_project):
    return load_config(example_project / "testplan.json")


@pytest.fixture
def write_config(tmp_path):
    """Write a raw config dict to disk and load it."""

    def _write(raw: dict, name: str = "testplan.json"):
        path = tmp_path / name
        path.write_text(json.dumps(raw), encoding="utf-8")
        return load_config(path)

    return _write
