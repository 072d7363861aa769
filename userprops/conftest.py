# userprops/conftest.py
import os
import sys
from pathlib import Path
from uuid import uuid4

import pytest

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time, so the test environment must be in place first.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")

PROTECTED_NAMES = frozenset({"id", "anonymousId"})


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Recreate all tables before each test.

    Uses TEST_DATABASE_URL (in-memory SQLite by default).
    """
    from userprops.core.database import reset_database

    reset_database()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    from userprops.core.metrics import METRICS

    METRICS.reset()
    yield


@pytest.fixture
def workspace_id():
    return str(uuid4())


@pytest.fixture
def service():
    from userprops.features.user_properties.service import UserPropertyService

    return UserPropertyService(protected_names=PROTECTED_NAMES)


@pytest.fixture
def client(service):
    """TestClient wired to the per-test service instance."""
    from fastapi.testclient import TestClient

    from userprops.features.user_properties.service import get_user_property_service
    from userprops.main import app

    app.dependency_overrides[get_user_property_service] = lambda: service
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.pop(get_user_property_service, None)
