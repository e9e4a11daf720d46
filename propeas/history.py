"""
Audit history viewer: filtering, dropdown options and CSV export.

The History screen loads the audit trail newest first and narrows it in
memory, so every filter here works on already fetched entries.
"""

import csv
import io
import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone

from ._logging import logger
from .models import AuditEntry

CSV_HEADERS = (
    "Timestamp",
    "User Name",
    "User Email",
    "User Role",
    "Action",
    "Description",
    "Target Entity",
    "Target Description",
    "Source",
)


@dataclass(frozen=True)
class HistoryFilter:
    """
    Filters of the History screen; empty values mean "any".

    ``date_from`` and ``date_to`` are inclusive calendar days (UTC).
    """

    search_text: str = ""
    action: str = ""
    source: str = ""
    actor: str = ""
    date_from: date | None = None
    date_to: date | None = None


def load_entries() -> list[AuditEntry]:
    """Every audit entry, newest first."""
    entries = AuditEntry.ordered_by("timestamp").reverse().all()
    logger.debug("Audit history loaded", extra={"count": len(entries)})
    return entries


def _matches(entry: AuditEntry, flt: HistoryFilter, needle: str) -> bool:
    if needle and needle not in json.dumps(entry.model_dump(mode="json"), default=str).lower():
        return False
    if flt.action and entry.action_type != flt.action:
        return False
    if flt.source and entry.source != flt.source:
        return False
    if flt.actor and entry.actor_user_email != flt.actor:
        return False
    if flt.date_from or flt.date_to:
        if entry.timestamp is None:
            return False
        day = entry.timestamp.astimezone(timezone.utc).date()
        if flt.date_from and day < flt.date_from:
            return False
        if flt.date_to and day > flt.date_to:
            return False
    return True


def apply_filters(entries: Iterable[AuditEntry], flt: HistoryFilter) -> list[AuditEntry]:
    needle = flt.search_text.strip().lower()
    return [entry for entry in entries if _matches(entry, flt, needle)]


def distinct_actions(entries: Iterable[AuditEntry]) -> list[str]:
    return sorted({e.action_type for e in entries if e.action_type})


def distinct_actors(entries: Iterable[AuditEntry]) -> list[str]:
    return sorted({e.actor_user_email for e in entries if e.actor_user_email})


def export_csv(entries: Iterable[AuditEntry]) -> str:
    """Renders entries as CSV, every data cell quoted, in the screen's column order."""
    buffer = io.StringIO()
    buffer.write(",".join(CSV_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for entry in entries:
        writer.writerow(
            (
                entry.timestamp.strftime("%Y-%m-%d %H:%M:%S") if entry.timestamp else "",
                entry.actor_user_name,
                entry.actor_user_email,
                entry.actor_user_role or "N/A",
                entry.action_type,
                entry.action_description,
                entry.target_entity_type,
                entry.target_entity_description,
                entry.source,
            )
        )
    return buffer.getvalue()


def format_time_ago(timestamp: datetime | None, now: datetime | None = None) -> str:
    """
    "42s ago", "5m ago", "3h ago", then "dd-mm-yyyy HH:MM" from a day on.

    Naive datetimes are taken as UTC.
    """
    if not isinstance(timestamp, datetime):
        return "N/A"
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return timestamp.strftime("%d-%m-%Y %H:%M")
