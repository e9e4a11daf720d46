"""
In-memory stand-ins for the store and the identity provider.

InMemoryPageSource answers PageRequests from a list of dict records the way
DocumentPageSource answers them from a listing index, and records every
request so tests can count round trips. FakeDocumentTables plays the
DynamoDB client for service tests.
"""

import re
import threading
from collections.abc import Callable
from typing import Any

from botocore.exceptions import ClientError

from propeas.exceptions import AuthenticationError, StoreUnavailableError
from propeas.identity import ProviderUser
from propeas.pagination import PageRequest, PageResult
from propeas.search import normalize_term
from propeas.serializer import DocumentSerializer


class InMemoryPageSource:
    """
    PageSource over plain dict records keyed by ``id``.

    Attributes:
        fetch_calls / search_calls: Every request received, in order
        fail: When true, every call raises StoreUnavailableError
        gate: Optional hook called with each request before it is answered
            (used to hold a request in flight)
    """

    def __init__(self, records: list[dict[str, Any]]) -> None:
        self.records = [dict(r) for r in records]
        self.fetch_calls: list[PageRequest] = []
        self.search_calls: list[PageRequest] = []
        self.fail = False
        self.gate: Callable[[PageRequest], None] | None = None

    def _check(self, request: PageRequest) -> None:
        if self.gate is not None:
            self.gate(request)
        if self.fail:
            raise StoreUnavailableError("connection refused")

    def _filtered(self, request: PageRequest) -> list[dict[str, Any]]:
        return [
            r
            for r in self.records
            if all(r.get(k) == v for k, v in request.filters.items() if v not in (None, ""))
        ]

    def fetch(self, request: PageRequest) -> PageResult[dict[str, Any]]:
        self.fetch_calls.append(request)
        self._check(request)

        ordered = sorted(
            (r for r in self._filtered(request) if r.get(request.order_by) is not None),
            key=lambda r: (r[request.order_by], r["id"]),
            reverse=request.descending,
        )
        start = 0
        if request.start_after:
            ids = [r["id"] for r in ordered]
            start = ids.index(request.start_after["id"]) + 1

        items = ordered[start:] if request.page_size is None else ordered[start : start + request.page_size]
        cursor = {"id": items[-1]["id"], request.order_by: items[-1][request.order_by]} if items else None
        has_more = request.page_size is not None and len(items) == request.page_size
        return PageResult(items=items, cursor=cursor, has_more=has_more)

    def search(self, request: PageRequest) -> PageResult[dict[str, Any]]:
        self.search_calls.append(request)
        self._check(request)

        term = normalize_term(request.search_term)
        field = request.search_field or ""
        items = sorted(
            (r for r in self._filtered(request) if normalize_term(r.get(field)).startswith(term)),
            key=lambda r: normalize_term(r.get(field)),
        )
        return PageResult(items=items, cursor=None, has_more=False)


class BlockingGate:
    """Holds the first request matching ``predicate`` until ``release`` is called."""

    def __init__(self, predicate: Callable[[PageRequest], bool]) -> None:
        self.predicate = predicate
        self.entered = threading.Event()
        self._released = threading.Event()
        self._used = False

    def __call__(self, request: PageRequest) -> None:
        if self._used or not self.predicate(request):
            return
        self._used = True
        self.entered.set()
        self._released.wait(timeout=5)

    def release(self) -> None:
        self._released.set()


class FakeIdentityProvider:
    """IdentityProvider keeping accounts in a dict of email -> (password, ProviderUser)."""

    def __init__(self, accounts: dict[str, tuple[str, ProviderUser]] | None = None) -> None:
        self.accounts = dict(accounts or {})
        self.user: ProviderUser | None = None
        self.listeners: list[Callable[[Any], None]] = []
        self.errors: dict[str, AuthenticationError] = {}

    def subscribe(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self.listeners):
            listener(self.user)

    def sign_in(self, email: str, password: str) -> ProviderUser:
        if email in self.errors:
            raise self.errors[email]
        if email not in self.accounts:
            raise AuthenticationError("No user found with this email.", code="user-not-found")
        stored_password, user = self.accounts[email]
        if stored_password != password:
            raise AuthenticationError("Incorrect password.", code="wrong-password")
        self.user = user
        self._notify()
        return user

    def sign_out(self) -> None:
        self.user = None
        self._notify()

    def current_user(self) -> ProviderUser | None:
        return self.user

    def create_account(self, email: str, password: str, name: str = "") -> ProviderUser:
        if email in self.accounts:
            raise AuthenticationError(
                "Email is already in use. Please use a different email.",
                code="email-already-in-use",
            )
        user = ProviderUser(id=f"uid-{len(self.accounts) + 1}", email=email, name=name)
        self.accounts[email] = (password, user)
        return user


class FakeDocumentTables:
    """
    Serves get/put/update/delete and paginated queries from dicts of raw items.

    Installed as side effects on a MagicMock DynamoDB client, so tests can
    still assert on the calls. Queries honour the index sort key (documents
    without it are skipped, as in a sparse GSI) and equality filters; other
    filter operators are not evaluated.
    """

    _ASSIGNMENT = re.compile(r"(#\w+) = (:\w+)")

    def __init__(self, client: Any) -> None:
        self.client = client
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        client.get_item.side_effect = self.get_item
        client.put_item.side_effect = self.put_item
        client.update_item.side_effect = self.update_item
        client.delete_item.side_effect = self.delete_item
        client.get_paginator.return_value.paginate.side_effect = self.paginate

    def add(self, table: str, **attributes: Any) -> dict[str, Any]:
        item = DocumentSerializer().to_dynamo(attributes)
        self.tables.setdefault(table, {})[attributes["id"]] = item
        return item

    def ids(self, table: str) -> list[str]:
        return sorted(self.tables.get(table, {}))

    def document(self, table: str, doc_id: str) -> dict[str, Any]:
        return DocumentSerializer().from_dynamo(self.tables[table][doc_id])

    def get_item(self, TableName: str, Key: dict[str, Any], **_: Any) -> dict[str, Any]:
        item = self.tables.get(TableName, {}).get(Key["id"]["S"])
        return {"Item": item} if item is not None else {}

    def put_item(self, TableName: str, Item: dict[str, Any], **_: Any) -> dict[str, Any]:
        self.tables.setdefault(TableName, {})[Item["id"]["S"]] = Item
        return {}

    def delete_item(self, TableName: str, Key: dict[str, Any], **_: Any) -> dict[str, Any]:
        self.tables.get(TableName, {}).pop(Key["id"]["S"], None)
        return {}

    def update_item(self, **kwargs: Any) -> dict[str, Any]:
        doc_id = kwargs["Key"]["id"]["S"]
        table = self.tables.get(kwargs["TableName"], {})
        if doc_id not in table:
            raise ClientError(
                {"Error": {"Code": "ConditionalCheckFailedException", "Message": "failed"}},
                "UpdateItem",
            )

        names = kwargs.get("ExpressionAttributeNames", {})
        values = kwargs.get("ExpressionAttributeValues", {})
        expression = kwargs["UpdateExpression"]
        set_part, _, remove_part = expression.partition("REMOVE ")

        item = dict(table[doc_id])
        for name_ph, value_ph in self._ASSIGNMENT.findall(set_part):
            item[names[name_ph]] = values[value_ph]
        for name_ph in filter(None, (p.strip() for p in remove_part.split(","))):
            item.pop(names[name_ph], None)
        table[doc_id] = item
        return {"Attributes": item}

    def paginate(self, **kwargs: Any) -> list[dict[str, Any]]:
        names = kwargs.get("ExpressionAttributeNames", {})
        values = kwargs.get("ExpressionAttributeValues", {})
        # Listing indexes are named after their sort attribute ("timestamp-index")
        sort_key = names.get("#sk") or kwargs.get("IndexName", "").removesuffix("-index") or None
        equals = [
            (names[name_ph], values[value_ph])
            for name_ph, value_ph in self._ASSIGNMENT.findall(kwargs.get("FilterExpression", ""))
        ]

        items = [
            item
            for item in self.tables.get(kwargs["TableName"], {}).values()
            if (sort_key is None or sort_key in item)
            and all(item.get(name) == value for name, value in equals)
        ]
        if sort_key:
            items.sort(
                key=lambda i: next(iter(i[sort_key].values())),
                reverse=not kwargs.get("ScanIndexForward", True),
            )
        return [{"Items": items}]
