"""Shared fixtures for the compose-spine test suite."""

import pytest

from compose_spine.core.logging import clear_context
from compose_spine.core.settings import reset_settings


@pytest.fixture(autouse=True)
def _isolate_process_state():
    """Drop cached settings and bound log context between tests."""
    reset_settings()
    clear_context()
    yield
    reset_settings()
    clear_context()
