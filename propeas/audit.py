"""
Append-only audit trail of dashboard mutations.

Every successful edit (client, payment, property, user, ...) is followed by
one ``AuditLogWriter.record`` call. Recording is best effort: an entry that
cannot be written is logged and dropped, and the mutation that triggered it
still counts as successful.

Usage:
    writer = AuditLogWriter()
    changes = diff_changes(before, after, ignore=("updated_at",))
    if changes:
        writer.record(
            AuditAction.UPDATE_CLIENT,
            actor=session.identity,
            target_entity_id=client.id,
            target_entity_type="client",
            target_entity_description=client.name,
            action_description=describe_changes(f"Updated client {client.name}", changes),
            details={"changes": changes},
        )
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from ._logging import logger, redact_key
from .exceptions import PropeasError
from .models import AuditEntry, utc_now

if TYPE_CHECKING:
    from .identity import Identity

AUDIT_SOURCE = "Platform Audit"


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    UPDATE_CLIENT = "UPDATE_CLIENT"
    UPDATE_CALLBACK_REQUEST = "UPDATE_CALLBACK_REQUEST"
    CONVERT_CALLBACK_TO_LEAD = "CONVERT_CALLBACK_TO_LEAD"
    UPDATE_CONTACT_REQUEST = "UPDATE_CONTACT_REQUEST"
    UPDATE_PAYMENT = "UPDATE_PAYMENT"
    UPDATE_PROPERTY = "UPDATE_PROPERTY"
    CREATE_PROPERTY = "CREATE_PROPERTY"
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"


def sanitize_details(value: Any) -> Any:
    """
    Converts audit details into plain storable values.

    Datetimes and dates become ISO strings, sets become sorted lists, models
    become dicts; containers are converted recursively.
    """
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return sanitize_details(value.model_dump())
    if isinstance(value, Mapping):
        return {str(k): sanitize_details(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((sanitize_details(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [sanitize_details(v) for v in value]
    return value


def _as_mapping(record: Any) -> Mapping[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump()
    return record


def diff_changes(
    before: Any, after: Any, ignore: Iterable[str] = ()
) -> dict[str, dict[str, Any]]:
    """
    Field-level diff of ``after`` against ``before`` as ``{field: {"from", "to"}}``.

    Only fields present in ``after`` are compared, so a partial form payload
    can be diffed against the full stored record.
    """
    before_map = _as_mapping(before) or {}
    after_map = _as_mapping(after) or {}
    skipped = set(ignore)

    changes: dict[str, dict[str, Any]] = {}
    for key, new in after_map.items():
        if key in skipped:
            continue
        old = before_map.get(key)
        if sanitize_details(old) != sanitize_details(new):
            changes[key] = {"from": sanitize_details(old), "to": sanitize_details(new)}
    return changes


def _display(value: Any) -> str:
    return "" if value is None else str(value)


def describe_changes(prefix: str, changes: Mapping[str, Mapping[str, Any]]) -> str:
    """Renders ``'Updated client Jane: phone from "1" to "2", name from "a" to "b"'``."""
    if not changes:
        return prefix
    parts = [
        f'{key} from "{_display(change.get("from"))}" to "{_display(change.get("to"))}"'
        for key, change in changes.items()
    ]
    return f"{prefix}: {', '.join(parts)}"


class AuditLogWriter:
    """
    Writes AuditEntry records for the signed-in actor.

    At-most-once: nothing is queued or retried. ``record`` never raises for
    store failures; it returns whether the entry was written.
    """

    def __init__(self, sink: type[AuditEntry] = AuditEntry) -> None:
        self.sink = sink

    def record(
        self,
        action_type: AuditAction | str,
        actor: Identity | None,
        target_entity_id: str = "",
        target_entity_type: str = "",
        target_entity_description: str = "",
        action_description: str = "",
        details: Any = None,
        timestamp: datetime | None = None,
    ) -> bool:
        action = action_type.value if isinstance(action_type, AuditAction) else action_type

        if actor is None:
            logger.warning("Audit entry skipped, no signed-in actor", extra={"action": action})
            return False

        role = actor.role.value if isinstance(actor.role, Enum) else actor.role
        entry = self.sink(
            timestamp=timestamp or utc_now(),
            action_type=action,
            actor_user_id=actor.id,
            actor_user_name=actor.name or "Unknown User",
            actor_user_email=actor.email or "N/A",
            actor_user_role=role or "N/A",
            target_entity_id=target_entity_id,
            target_entity_type=target_entity_type,
            target_entity_description=target_entity_description,
            action_description=action_description,
            source=AUDIT_SOURCE,
            details=sanitize_details(details),
        )

        try:
            entry.save()
        except PropeasError as e:
            logger.error(
                "Failed to write audit entry",
                extra={
                    "action": action,
                    "actor_hash": redact_key(actor.id),
                    "target_type": target_entity_type,
                    "error": e.message,
                },
            )
            return False

        logger.debug(
            "Audit entry written",
            extra={"action": action, "entry_id": entry.id, "target_type": target_entity_type},
        )
        return True
