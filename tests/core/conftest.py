"""Pytest configuration for core tests.

All tests in tests/core/ are v2 (headless) functionality.
"""

import pytest


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as v2."""
    for item in items:
        if "/tests/core/" in str(item.fspath):
            item.add_marker(pytest.mark.v2)
