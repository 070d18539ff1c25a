"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mathgrid.core.facts import Guardrail  # noqa: E402
from mathgrid.core.mastery import MasteryEngine  # noqa: E402
from mathgrid.db.store import InMemoryGridStore  # noqa: E402

FIXED_NOW = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite / mocked HTTP)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mastery():
    """Mastery engine with a frozen wall clock."""
    return MasteryEngine(clock=lambda: FIXED_NOW)


@pytest.fixture
def store():
    return InMemoryGridStore()


@pytest.fixture
def small_store():
    """Store whose new grids start at the 1-5 guardrail."""
    return InMemoryGridStore(default_guardrail=Guardrail.ONE_TO_FIVE)

