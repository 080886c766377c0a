"""Fixtures for unit tests."""

import pytest

from devworkspace.app.config import ControllerConfig
from devworkspace.core.interfaces import Collaborators
from devworkspace.core.operator_config import OperatorConfigStore
from tests.factories import FakeClock, make_collaborators


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def collaborators() -> Collaborators:
    """Collaborator mocks; every call succeeds unless a test overrides it."""
    return make_collaborators()


@pytest.fixture
def config_store() -> OperatorConfigStore:
    return OperatorConfigStore()


@pytest.fixture
def controller_settings() -> ControllerConfig:
    return ControllerConfig(webhooks_enabled=True, health_check_requeue=1.0)
