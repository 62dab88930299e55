"""Root conftest.py for the webtest repository.

This provides shared pytest configuration across all packages. It also marks
tests that spawn a real runner subprocess so they can be deselected with
``-m "not subprocess"``.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


# Add all package src directories to path for imports
PROJECT_ROOT = Path(__file__).parent
for pkg_dir in PROJECT_ROOT.glob("webtest-*/src"):
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))

# Fixtures whose use means the test launches a child process
SUBPROCESS_FIXTURES = frozenset({"fake_runner", "runner_config"})


def pytest_configure(config: Config) -> None:
    """Register custom markers.

    Args:
        config: pytest configuration object.
    """
    config.addinivalue_line(
        "markers",
        "subprocess: Test spawns a runner subprocess (auto-detected)",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Mark tests that request a subprocess fixture.

    Args:
        config: pytest configuration object.
        items: List of collected test items.
    """
    subprocess_marker = pytest.mark.subprocess

    for item in items:
        if item.get_closest_marker("subprocess"):
            continue
        if SUBPROCESS_FIXTURES.intersection(getattr(item, "fixturenames", ())):
            item.add_marker(subprocess_marker)


def pytest_report_header(config: Config) -> list[str]:
    """Add a project line to the pytest header.

    Args:
        config: pytest configuration object.

    Returns:
        List of header lines.
    """
    return ["webtest dashboard test suite"]
