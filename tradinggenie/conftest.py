# tradinggenie/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Make `import tradinggenie` work without an editable install
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tradinggenie.core.config import settings
from tradinggenie.tests.mocks import FakeGateway, FakeNotifier


@pytest.fixture(scope="function", autouse=True)
def db():
    """
    Fresh in-memory SQLite database for every test.

    Set TEST_DATABASE_URL to run against a real database instead; tables are
    dropped after each test.
    """
    from tradinggenie.core.database import init_engine, create_all_tables, drop_all_tables

    init_engine(os.getenv("TEST_DATABASE_URL") or "sqlite://")
    create_all_tables()
    yield
    drop_all_tables()


@pytest.fixture
def gateway():
    gw = FakeGateway()
    gw.add_subscription("sub_1")
    return gw


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def services(gateway, notifier):
    from tradinggenie.features.billing.service import wire_services
    return wire_services(settings, gateway, notifier=notifier)


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient
    from tradinggenie.main import create_app
    return TestClient(create_app(services), raise_server_exceptions=False)


@pytest.fixture
def no_admin_key(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", None)
