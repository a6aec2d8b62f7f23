"""Shared fixtures, pytest markers, and env-var-based skip logic."""

import os

import pytest


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: thread races and timing-based tests (skip with ROBOBUS_SKIP_SLOW=1)"
    )
    config.addinivalue_line(
        "markers", "e2e: needs a real rosbridge or MQTT broker (ROBOBUS_TEST_E2E=1, ROBOBUS_TEST_ENDPOINT)"
    )


def pytest_collection_modifyitems(config, items):
    # slow runs by default; set ROBOBUS_SKIP_SLOW to disable
    # e2e is opt-in; set ROBOBUS_TEST_E2E=1 to enable
    for item in items:
        if "slow" in item.keywords and os.environ.get("ROBOBUS_SKIP_SLOW"):
            item.add_marker(
                pytest.mark.skip(reason="ROBOBUS_SKIP_SLOW is set")
            )
        if "e2e" in item.keywords and not os.environ.get("ROBOBUS_TEST_E2E"):
            item.add_marker(
                pytest.mark.skip(reason="Set ROBOBUS_TEST_E2E=1 to run")
            )
