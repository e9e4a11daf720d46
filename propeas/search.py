"""
Text search helpers for list screens.

The document store has no full-text search. "Starts with" matching is done
with the prefix-range idiom: a range query over a lower-cased shadow field
between the term and the term followed by the highest private-use codepoint.
Only one field can be searched that way per query, so screens that let the
user search "by name, email or phone" query one field and filter the
returned candidates in memory against the others. A term that only occurs
in the middle of the indexed field ("Mary Jane" for "jane") is never found.

Usage:
    low, high = prefix_range("Jane")      # ("jane", "jane\\uf8ff")
    debouncer = SearchDebouncer(controller)
    debouncer.submit("ja")
    debouncer.submit("jan")               # replaces the pending "ja"
    await debouncer.wait()                # one search for "jan"
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from ._logging import logger
from .config import get_settings

if TYPE_CHECKING:
    from .pagination import PageResult, PaginatedQueryController

# Highest codepoint of the Basic Multilingual Plane's private use area; sorts
# after every character that appears in names, emails and phone numbers.
PREFIX_RANGE_END = "\uf8ff"


def normalize_term(value: Any) -> str:
    """Case-normalizes a search term or a field value (``None`` becomes "")."""
    if value is None:
        return ""
    return str(value).strip().lower()


def prefix_range(term: str) -> tuple[str, str]:
    """
    Returns the ``(low, high)`` bounds matching every value starting with ``term``.

    Both bounds are already case-normalized.
    """
    low = normalize_term(term)
    return low, low + PREFIX_RANGE_END


def matches_prefix(value: Any, term: str) -> bool:
    """Client-side equivalent of a prefix-range query on one value."""
    return normalize_term(value).startswith(normalize_term(term))


def _field_value(record: Any, field_name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field_name)
    return getattr(record, field_name, None)


def matches_any(record: Any, fields: Iterable[str], term: str) -> bool:
    """
    True when any of ``fields`` contains ``term`` (case-insensitive).

    Used to narrow the candidates a prefix query returned; records can be
    models or plain mappings. An empty term matches everything.
    """
    needle = normalize_term(term)
    if not needle:
        return True
    return any(needle in normalize_term(_field_value(record, name)) for name in fields)


class SearchDebouncer:
    """
    Collapses a burst of search-term changes into a single search.

    Every ``submit`` restarts the quiet period; only when ``delay`` seconds
    pass without another ``submit`` is ``controller.search`` called, with the
    last term. Once a search has been issued it is never cancelled: it runs
    to completion and the controller's sequence numbers decide whether its
    result is still wanted.

    Must be used from a running event loop.
    """

    def __init__(
        self,
        controller: PaginatedQueryController,
        delay: float | None = None,
    ) -> None:
        self.controller = controller
        self.delay = get_settings().search_debounce_seconds if delay is None else delay
        self._task: asyncio.Task[PageResult[Any] | None] | None = None
        self._waiting = False

    @property
    def pending(self) -> bool:
        """True while a submitted term is still inside its quiet period."""
        return self._waiting

    def submit(
        self, term: str, filters: Mapping[str, Any] | None = None
    ) -> asyncio.Task[PageResult[Any] | None]:
        """Schedules a search for ``term``, replacing any term still waiting."""
        self.cancel()
        self._waiting = True
        self._task = asyncio.get_running_loop().create_task(self._run(term, filters))
        return self._task

    async def _run(self, term: str, filters: Mapping[str, Any] | None) -> PageResult[Any] | None:
        await asyncio.sleep(self.delay)
        self._waiting = False
        logger.debug("Debounce window elapsed", extra={"operation": "search", "term_length": len(term)})
        return await self.controller.search(term, filters)

    def cancel(self) -> None:
        """Drops the term waiting for its quiet period, if any."""
        if self._task is not None and self._waiting:
            self._task.cancel()
        self._waiting = False

    async def wait(self) -> PageResult[Any] | None:
        """
        Waits for the latest submitted term to be searched.

        Returns the search result, or None when nothing was submitted or the
        term was cancelled before its quiet period ended.
        """
        task = self._task
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()
