"""
Cursor pagination for Propeas list screens.

Every list screen (clients, payments, callback requests, audit history, ...)
shows one page of a collection at a time, ordered by one field, with
"previous"/"next" buttons and an optional free-text search box. This module
holds the shared machinery:

- PageRequest / PageResult: the input and output of one fetch
- CursorStack: the cursors of the pages seen so far, for going back
- PageSource: what the controller queries (DocumentPageSource for models)
- PaginatedQueryController: the per-screen state machine

Cursor bookkeeping: ``stack[i]`` is the cursor of the last record of page
``i`` for every page before the current one, so on page ``n`` the stack
holds ``n`` cursors and page ``n`` was fetched starting after
``stack[n - 1]``. The current page's own end cursor is ``controller.cursor``
and is pushed when moving forward. The stack is cleared whenever ordering,
filters or page size change, and it is only touched once a fetch has
succeeded.

Search mode: a non-empty search term replaces paging with a single prefix
query that returns every match (``has_more`` is always false). Clearing the
term goes back to page 0 of the normal listing.

Usage:
    controller = PaginatedQueryController(
        DocumentPageSource(Invoice), "timestamp", page_size=10, search_field="client_email",
    )
    await controller.fetch_page(Direction.FIRST)
    await controller.fetch_page(Direction.NEXT)
    await controller.search("jane")
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from ._logging import logger
from .conditions import equality_filter
from .config import get_settings
from .exceptions import PropeasError
from .search import matches_any, normalize_term, prefix_range

if TYPE_CHECKING:
    from .base import DocumentModel
    from .identity import SessionContext

T = TypeVar("T")
M = TypeVar("M", bound="DocumentModel")

Cursor = dict[str, Any]

DEFAULT_ERROR_MESSAGE = "Failed to fetch records. Please try again."
DEFAULT_SEARCH_ERROR_MESSAGE = "Search failed. Please try again."


class Direction(str, Enum):
    FIRST = "first"
    NEXT = "next"
    PREV = "prev"


class ViewState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class PageRequest:
    """
    One fetch, as handed to a PageSource.

    ``page_size`` is None for search requests, which return every match.
    """

    order_by: str
    page_size: int | None
    direction: Direction = Direction.FIRST
    descending: bool = True
    filters: Mapping[str, Any] = field(default_factory=dict)
    start_after: Cursor | None = None
    search_term: str | None = None
    search_field: str | None = None


@dataclass(frozen=True)
class PageResult(Generic[T]):
    """
    Represents a single page of results with pagination cursor.

    Attributes:
        items: Records of this page, in order
        cursor: Cursor of the last record (None for an empty page)
        has_more: True when the page came back full; more records *may* exist
    """

    items: list[T]
    cursor: Cursor | None
    has_more: bool

    @property
    def count(self) -> int:
        return len(self.items)


class CursorStack:
    """Cursors of the last record of every page visited, indexed by page number."""

    def __init__(self) -> None:
        self._cursors: list[Cursor | None] = []

    def __len__(self) -> int:
        return len(self._cursors)

    def __getitem__(self, index: int) -> Cursor | None:
        return self._cursors[index]

    def start_after(self, page_index: int) -> Cursor | None:
        """
        Cursor to start page ``page_index`` after (None for page 0).

        Raises:
            IndexError: If page ``page_index - 1`` was never visited
        """
        if page_index <= 0:
            return None
        if page_index - 1 >= len(self._cursors):
            raise IndexError(f"No cursor recorded for page {page_index - 1}")
        return self._cursors[page_index - 1]

    def record(self, page_index: int, cursor: Cursor | None) -> None:
        """Stores the end cursor of ``page_index``, forgetting every later page."""
        del self._cursors[page_index:]
        self._cursors.append(cursor)

    def truncate(self, length: int) -> None:
        """Keeps the cursors of the first ``length`` pages."""
        del self._cursors[length:]

    def clear(self) -> None:
        self._cursors.clear()

    def as_list(self) -> list[Cursor | None]:
        return list(self._cursors)


class PageSource(Protocol[T]):
    """
    Blocking data access used by the controller (run off the event loop).

    ``fetch`` returns at most ``request.page_size`` records ordered by
    ``request.order_by`` starting after ``request.start_after``; ``search``
    returns every record whose ``request.search_field`` starts with
    ``request.search_term``.
    """

    def fetch(self, request: PageRequest) -> PageResult[T]: ...

    def search(self, request: PageRequest) -> PageResult[T]: ...


class DocumentPageSource(Generic[M]):
    """
    PageSource over a DocumentModel's listing indexes.

    Paging uses the index sorted on the ordering field; search uses the
    index sorted on the ``*_search`` shadow of the search field with the
    prefix-range idiom. Equality filters become a FilterExpression.
    """

    def __init__(self, model_cls: type[M]) -> None:
        self.model_cls = model_cls

    def fetch(self, request: PageRequest) -> PageResult[M]:
        query = (
            self.model_cls.ordered_by(request.order_by)
            .reverse(request.descending)
            .filter(equality_filter(request.filters))
        )
        if request.page_size:
            query.limit(request.page_size)
        return query.page(request.start_after)

    def search(self, request: PageRequest) -> PageResult[M]:
        config = self.model_cls._meta
        shadow = config.search_shadow_for(request.search_field or "")
        index = config.index_sorted_by(shadow) if shadow else None
        if index is None:
            raise ValueError(
                f"Model {self.model_cls.__name__} has no search index for '{request.search_field}'"
            )

        low, high = prefix_range(request.search_term or "")
        items = (
            self.model_cls.query_index(index.index_name)
            .between(low, high)
            .filter(equality_filter(request.filters))
            .all()
        )
        return PageResult(items=items, cursor=None, has_more=False)


class PaginatedQueryController(Generic[T]):
    """
    Per-screen pagination and search state.

    The presentation layer reads ``rows``, ``state``, ``error``,
    ``page_index``, ``has_more`` and ``search_term`` after each call.

    Every fetch or search takes the next sequence number; when a response
    arrives and a newer request has been issued since, it is dropped and
    the call returns None. Failures leave ``rows`` untouched, set ``state``
    to ERROR and put a user-facing message in ``error``; nothing is retried.

    When a session is given, nothing is queried until it reports
    ``is_ready`` (an identity is present and not loading).
    """

    def __init__(
        self,
        source: PageSource[T],
        order_by: str,
        *,
        page_size: int | None = None,
        descending: bool = True,
        search_field: str | None = None,
        search_fields: Sequence[str] | None = None,
        filters: Mapping[str, Any] | None = None,
        session: SessionContext | None = None,
        page_size_options: Sequence[int] | None = None,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        search_error_message: str = DEFAULT_SEARCH_ERROR_MESSAGE,
    ) -> None:
        self.source = source
        self.order_by = order_by
        self.page_size = page_size or get_settings().default_page_size
        self.descending = descending
        self.search_field = search_field
        self.search_fields: tuple[str, ...] = tuple(
            search_fields or ([search_field] if search_field else [])
        )
        self.filters: dict[str, Any] = dict(filters or {})
        self.session = session
        self.page_size_options: tuple[int, ...] = tuple(
            page_size_options or get_settings().page_size_options
        )
        self.error_message = error_message
        self.search_error_message = search_error_message

        self.stack = CursorStack()
        self.page_index = 0
        self.rows: list[T] = []
        self.cursor: Cursor | None = None
        self.has_more = False
        self.search_term = ""
        self.state = ViewState.IDLE
        self.error: str | None = None

        self._sequence = 0

    @property
    def is_searching(self) -> bool:
        return bool(self.search_term)

    @property
    def current(self) -> PageResult[T]:
        """The page currently on screen."""
        return PageResult(items=list(self.rows), cursor=self.cursor, has_more=self.has_more)

    def _can_fetch(self) -> bool:
        if self.session is None or self.session.is_ready:
            return True
        logger.debug("Fetch skipped, session not ready", extra={"order_by": self.order_by})
        return False

    def _resolve(self, direction: Direction) -> tuple[Direction, int, Cursor | None]:
        """Maps a requested direction onto (effective direction, target page, start cursor)."""
        if direction is Direction.NEXT:
            if self.is_searching or self.cursor is None:
                # Nothing to continue from (no page loaded yet, or an empty one)
                return Direction.FIRST, 0, None
            return Direction.NEXT, self.page_index + 1, self.cursor

        if direction is Direction.PREV:
            target = self.page_index - 1
            if target <= 0 or self.is_searching:
                return Direction.FIRST, 0, None
            return Direction.PREV, target, self.stack.start_after(target)

        return Direction.FIRST, 0, None

    async def fetch_page(
        self,
        direction: Direction | str = Direction.FIRST,
        page_index: int | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> PageResult[T] | None:
        """
        Fetches the first, next or previous page.

        Args:
            direction: ``first`` (reset), ``next`` or ``prev``
            page_index: Page being requested; when given it must match the
                direction (0 for ``first``, current +1 for ``next``, current -1 for ``prev``)
            filters: Equality filters; different filters restart at page 0

        Returns:
            The page now on screen, or None if the fetch was superseded or
            the session is not ready.

        Raises:
            ValueError: If ``page_index`` does not match ``direction``
        """
        direction = Direction(direction)

        if page_index is not None:
            expected = {
                Direction.FIRST: 0,
                Direction.NEXT: self.page_index + 1,
                Direction.PREV: max(self.page_index - 1, 0),
            }[direction]
            if page_index != expected:
                raise ValueError(
                    f"Cannot fetch page {page_index} with direction '{direction.value}' "
                    f"from page {self.page_index}"
                )

        if filters is not None and dict(filters) != self.filters:
            return await self._fetch(Direction.FIRST, filters=dict(filters))
        return await self._fetch(direction)

    async def _fetch(self, direction: Direction, **changes: Any) -> PageResult[T] | None:
        """
        Fetches a page, with ``changes`` to order_by/descending/page_size/filters.

        Changed settings restart at page 0 and are only committed, together
        with the stack and page index, once the fetch succeeds.
        """
        if not self._can_fetch():
            return None

        settings = {
            "order_by": self.order_by,
            "descending": self.descending,
            "page_size": self.page_size,
            "filters": self.filters,
            **changes,
        }
        if changes:
            effective, target, start_after = Direction.FIRST, 0, None
        else:
            effective, target, start_after = self._resolve(direction)

        request = PageRequest(
            order_by=settings["order_by"],
            page_size=settings["page_size"],
            direction=effective,
            descending=settings["descending"],
            filters=dict(settings["filters"]),
            start_after=start_after,
        )

        origin, prior = self.page_index, self.cursor

        def apply(result: PageResult[T]) -> None:
            for name, value in changes.items():
                setattr(self, name, value)
            if effective is Direction.NEXT:
                self.stack.record(origin, prior)
            else:
                self.stack.truncate(target)
            self.page_index = target
            self.search_term = ""

        return await self._execute(request, self.source.fetch, apply)

    async def search(
        self, term: str, filters: Mapping[str, Any] | None = None
    ) -> PageResult[T] | None:
        """
        Runs a prefix search on ``search_field``, or leaves search mode.

        A blank term returns to page 0 of the normal listing. Otherwise every
        record whose search field starts with the term (case-insensitive) is
        fetched in one go, ordered by that field.

        ``search_fields`` narrows the matches client side: a record stays
        when any of those fields contains the term. The screens list the
        search field itself among them, so on a screen every prefix match
        stays; records are only dropped by a controller whose
        ``search_fields`` leave the search field out.

        Without a ``search_field`` the whole filtered listing is fetched in
        its normal order and ``search_fields`` alone decide what stays.

        Raises:
            ValueError: If the controller has neither a search field nor search fields
        """
        normalized = normalize_term(term)
        if not normalized:
            return await self.fetch_page(Direction.FIRST, filters=filters)

        if not self.search_field and not self.search_fields:
            raise ValueError("This list has no search field")

        if not self._can_fetch():
            return None

        active_filters = dict(self.filters if filters is None else filters)
        if self.search_field:
            request = PageRequest(
                order_by=self.search_field,
                page_size=None,
                direction=Direction.FIRST,
                descending=False,
                filters=active_filters,
                search_term=normalized,
                search_field=self.search_field,
            )
            lookup = self.source.search
        else:
            request = PageRequest(
                order_by=self.order_by,
                page_size=None,
                direction=Direction.FIRST,
                descending=self.descending,
                filters=active_filters,
                search_term=normalized,
            )
            lookup = self.source.fetch
        fields = self.search_fields

        def run(req: PageRequest) -> PageResult[T]:
            found = lookup(req)
            items = [item for item in found.items if matches_any(item, fields, normalized)]
            return PageResult(items=items, cursor=None, has_more=False)

        def apply(result: PageResult[T]) -> None:
            self.filters = active_filters
            self.stack.clear()
            self.page_index = 0
            self.search_term = normalized

        return await self._execute(request, run, apply, self.search_error_message)

    async def go_to_page(self, new_page: int) -> PageResult[T] | None:
        """Moves one page towards ``new_page`` (ignored while searching)."""
        if self.is_searching:
            return None
        if new_page > self.page_index:
            return await self.fetch_page(Direction.NEXT)
        if new_page < self.page_index:
            return await self.fetch_page(Direction.PREV)
        return await self.fetch_page(Direction.FIRST)

    async def set_page_size(self, page_size: int) -> PageResult[T] | None:
        """
        Changes the page size and restarts at page 0.

        Raises:
            ValueError: While searching, or for a size the screens don't offer
        """
        if self.is_searching:
            raise ValueError("Page size cannot change while a search is active")
        options = self.page_size_options
        if page_size <= 0 or (options and page_size not in options):
            raise ValueError(f"Page size must be one of {list(options)}")
        return await self._fetch(Direction.FIRST, page_size=page_size)

    async def set_ordering(self, order_by: str, descending: bool | None = None) -> PageResult[T] | None:
        """Changes the ordering field (and direction) and restarts at page 0."""
        changes: dict[str, Any] = {"order_by": order_by}
        if descending is not None:
            changes["descending"] = descending
        return await self._fetch(Direction.FIRST, **changes)

    async def refresh(self) -> PageResult[T] | None:
        """Re-runs the active search, or reloads from page 0."""
        if self.is_searching:
            return await self.search(self.search_term)
        return await self.fetch_page(Direction.FIRST)

    async def _execute(
        self,
        request: PageRequest,
        call: Callable[[PageRequest], PageResult[T]],
        apply: Callable[[PageResult[T]], None],
        error_message: str | None = None,
    ) -> PageResult[T] | None:
        self._sequence += 1
        sequence = self._sequence
        self.state = ViewState.LOADING
        self.error = None

        logger.info(
            "Fetching page",
            extra={
                "operation": "search" if request.search_term else "fetch_page",
                "sequence": sequence,
                "order_by": request.order_by,
                "direction": request.direction.value,
                "limit": request.page_size,
                "has_cursor": request.start_after is not None,
            },
        )

        try:
            result = await asyncio.to_thread(call, request)
        except PropeasError as e:
            if sequence != self._sequence:
                logger.debug("Discarding stale failure", extra={"sequence": sequence})
                return None
            logger.warning(
                "Fetch failed",
                extra={"sequence": sequence, "order_by": request.order_by, "error": e.message},
            )
            self.state = ViewState.ERROR
            self.error = error_message or self.error_message
            return None

        if sequence != self._sequence:
            logger.debug(
                "Discarding stale response",
                extra={"sequence": sequence, "latest": self._sequence},
            )
            return None

        apply(result)
        self.rows = list(result.items)
        self.cursor = result.cursor
        self.has_more = result.has_more
        self.state = ViewState.LOADED
        return result
