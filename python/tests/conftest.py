"""Shared fixtures for the taskcore test suite."""

import pytest

from taskcore.config.settings import TaskCoreSettings

from fakes import FakeClock


@pytest.fixture
def settings(tmp_path):
    return TaskCoreSettings(
        working_directory=str(tmp_path),
        cooldown_ms=0,
        queue_poll_interval_ms=5,
        max_iterations=5,
    )


@pytest.fixture
def clock():
    return FakeClock()
