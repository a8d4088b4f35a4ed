"""
Pytest configuration and fixtures.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add project root and this directory (for the factories module) to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import Settings  # noqa: E402
from execution.decision import DecisionEngine  # noqa: E402
from execution.executor import Executor  # noqa: E402
from execution.lifecycle_manager import LifecycleManager  # noqa: E402
from execution.lifecycle_store import InMemoryRecommendationStore  # noqa: E402
from observability.audit_log import InMemoryAuditLog  # noqa: E402


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def engine(settings):
    return DecisionEngine(settings)


@pytest.fixture
def store():
    return InMemoryRecommendationStore()


@pytest.fixture
def audit_log():
    return InMemoryAuditLog()


@pytest.fixture
def manager(store, audit_log):
    return LifecycleManager(store, audit_log)


@pytest.fixture
def venue():
    venue = AsyncMock()
    venue.submit.return_value = {"order_id": "ord-1", "status": "accepted"}
    return venue


@pytest.fixture
def executor(manager, venue, settings):
    return Executor(manager, venue=venue, settings=settings)
