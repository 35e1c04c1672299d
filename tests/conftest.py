"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import Iterator

import pytest

# Loaded from conftest (not an entry point) so that the mqttsim import
# chain is first touched after coverage tracing has started.
pytest_plugins = ["mqttsim.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (full simulator on test doubles)"
    )


@pytest.fixture
def _restore_root_logger() -> Iterator[None]:
    """Save and restore root logger handlers and level.

    Ensures tests that call ``configure_logging()`` (directly or via
    ``Simulator.start``) don't leak state across subsequent tests.
    """
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    aiomqtt_level = logging.getLogger("aiomqtt").level
    yield
    for h in root.handlers:
        if h not in original_handlers:
            h.close()
    root.handlers = original_handlers
    root.setLevel(original_level)
    logging.getLogger("aiomqtt").setLevel(aiomqtt_level)
