"""Builders for identities, sessions and raw DynamoDB items used across tests."""

from typing import Any
from unittest.mock import MagicMock

from propeas.audit import AuditLogWriter
from propeas.identity import Identity, Role, SessionContext
from tests.helpers.memory import FakeIdentityProvider


def make_identity(role: Role = Role.ADMIN, **overrides: Any) -> Identity:
    values = {
        "id": "uid-admin",
        "email": "admin@propeas.in",
        "name": "Asha Admin",
        "phone": "9876543210",
        "role": role,
    }
    values.update(overrides)
    return Identity(**values)


def make_session(identity: Identity | None, audit: Any | None = None) -> SessionContext:
    """A session that is already resolved to ``identity`` (no provider round trip)."""
    session = SessionContext(FakeIdentityProvider(), audit=audit or MagicMock(spec=AuditLogWriter))
    session.identity = identity
    session.is_loading = False
    return session


def dynamo_invoice(
    invoice_id: str, timestamp: str, client_email: str = "a@example.com", amount: str = "100"
) -> dict[str, Any]:
    """A raw invoices item as DynamoDB returns it."""
    return {
        "id": {"S": invoice_id},
        "listing": {"S": "invoices"},
        "timestamp": {"S": timestamp},
        "client_email": {"S": client_email},
        "client_email_search": {"S": client_email.lower()},
        "amount": {"N": amount},
    }
