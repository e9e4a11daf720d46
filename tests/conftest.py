"""
Shared pytest fixtures and configuration for Propeas tests.

Store access is exercised against a MagicMock boto3 client installed with
``DocumentModel.set_client``; controllers run against the in-memory page
source in ``tests/helpers/memory.py``.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from propeas import DocumentModel, get_settings
from propeas.identity import ProviderUser, Role, SessionContext
from tests.helpers.factories import make_identity, make_session
from tests.helpers.memory import FakeIdentityProvider, InMemoryPageSource


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests with mocked dependencies")


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Every test reads settings from a clean environment."""
    for name in [n for n in os.environ if n.startswith("PROPEAS_")]:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_client():
    """
    Creates a fully mocked boto3 DynamoDB client.

    This fixture provides a mock client for unit tests that don't need
    real DynamoDB interactions.
    """
    client = MagicMock()
    client.get_paginator.return_value = MagicMock()
    return client


@pytest.fixture
def inject_mock_client(mock_client):
    """Installs the mock client for every collection model, restoring the default afterwards."""
    DocumentModel.set_client(mock_client)
    yield mock_client
    DocumentModel.set_client(None)


@pytest.fixture
def admin_session() -> SessionContext:
    return make_session(make_identity(Role.ADMIN))


@pytest.fixture
def sales_session() -> SessionContext:
    return make_session(make_identity(Role.SALES, id="uid-sales", email="sales@propeas.in", name="Sam Sales"))


@pytest.fixture
def fake_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider(
        {
            "admin@propeas.in": (
                "secret123",
                ProviderUser(id="uid-admin", email="admin@propeas.in", name="Asha"),
            ),
        }
    )


@pytest.fixture
def twelve_clients() -> list[dict[str, Any]]:
    """Clients c01..c12 created one hour apart; c12 is the newest."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        {
            "id": f"c{i:02d}",
            "name": f"Client {i:02d}",
            "email": f"client{i:02d}@example.com",
            "status": "active" if i % 2 else "pending",
            "created_at": start + timedelta(hours=i),
        }
        for i in range(1, 13)
    ]


@pytest.fixture
def twelve_client_source(twelve_clients) -> InMemoryPageSource:
    return InMemoryPageSource(twelve_clients)


@pytest.fixture
def people_source() -> InMemoryPageSource:
    return InMemoryPageSource(
        [
            {"id": "p1", "name": "Jane Doe", "email": "jane@doe.com", "phone": "9000000001"},
            {"id": "p2", "name": "Janet Smith", "email": "janet@smith.com", "phone": "9000000002"},
            {"id": "p3", "name": "Mary Jane", "email": "mary@jane.com", "phone": "9000000003"},
            {"id": "p4", "name": "John Roe", "email": "john@roe.com", "phone": "9000000004"},
        ]
    )


