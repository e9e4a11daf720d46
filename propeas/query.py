from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any, TypeVar

from ._logging import logger, redact_key
from .exceptions import handle_store_errors

if TYPE_CHECKING:
    from .base import DocumentModel
    from .conditions import Condition
    from .pagination import PageResult

# We use a TypeVar bound to 'DocumentModel' to ensure
# that QueryBuilder returns the correct subclass (e.g., Client, Invoice)
T = TypeVar("T", bound="DocumentModel")


class DocumentQueryBuilder(Iterable[T]):
    """
    Implements the Builder Pattern for DynamoDB Queries.
    Allows chaining methods (e.g., .between().limit().reverse())
    before executing the request.
    """

    def __init__(self, model_cls: type[T], pk_val: Any, index_name: str | None = None):
        self.model_cls = model_cls
        self.config = model_cls._meta
        self.client = model_cls._get_client()
        self.serializer = model_cls._serializer

        # Internal state of the query
        self.pk_val = pk_val
        self.sk_condition: str | None = None
        self.limit_val: int | None = None
        self.scan_forward = True
        self.index_name = index_name
        self.filter_condition: Condition | None = None

        # Determine which keys to use based on index
        if index_name:
            index = self.config.get_index(index_name)
            if not index:
                raise ValueError(
                    f"Index '{index_name}' is not defined on model {model_cls.__name__}"
                )
            self.pk_name = index.pk_name
            self.sk_name = index.sk_name
        else:
            self.pk_name = self.config.pk_name
            self.sk_name = None

        # Partition value is serialized immediately; names are escaped since
        # "status", "name" and "timestamp" are all DynamoDB reserved words.
        self.expression_values: dict[str, Any] = {":pk": self.serializer.to_dynamo_value(pk_val)}
        self.expression_names: dict[str, str] = {"#pk": self.pk_name}

    def _sort_key_condition(self, expression: str, **values: Any) -> "DocumentQueryBuilder[T]":
        if not self.sk_name:
            raise ValueError("Index does not have a Sort Key defined.")

        self.sk_condition = expression
        self.expression_names["#sk"] = self.sk_name
        for placeholder, value in values.items():
            self.expression_values[f":{placeholder}"] = self.serializer.to_dynamo_value(value)
        return self

    # --- KEY CONDITION METHODS (Builder Interface) ---

    def starts_with(self, prefix: Any) -> "DocumentQueryBuilder[T]":
        """Adds a 'begins_with' condition on the Sort Key."""
        return self._sort_key_condition("begins_with(#sk, :sk)", sk=prefix)

    def between(self, low: Any, high: Any) -> "DocumentQueryBuilder[T]":
        """Adds a 'BETWEEN' condition on the Sort Key (both bounds inclusive)."""
        return self._sort_key_condition("#sk BETWEEN :low AND :high", low=low, high=high)

    def gt(self, val: Any) -> "DocumentQueryBuilder[T]":
        """Adds a Greater Than (>) condition on the Sort Key."""
        return self._sort_key_condition("#sk > :sk", sk=val)

    def lt(self, val: Any) -> "DocumentQueryBuilder[T]":
        """Adds a Less Than (<) condition on the Sort Key."""
        return self._sort_key_condition("#sk < :sk", sk=val)

    def ge(self, val: Any) -> "DocumentQueryBuilder[T]":
        """Adds a Greater Than or Equal To (>=) condition on the Sort Key."""
        return self._sort_key_condition("#sk >= :sk", sk=val)

    def le(self, val: Any) -> "DocumentQueryBuilder[T]":
        """Adds a Less Than or Equal To (<=) condition on the Sort Key."""
        return self._sort_key_condition("#sk <= :sk", sk=val)

    def eq(self, val: Any) -> "DocumentQueryBuilder[T]":
        """Adds an Equal To (=) condition on the Sort Key."""
        return self._sort_key_condition("#sk = :sk", sk=val)

    # --- QUERY OPTIONS ---

    def limit(self, count: int) -> "DocumentQueryBuilder[T]":
        """Sets the maximum number of documents to return."""
        if count <= 0:
            raise ValueError("limit must be a positive integer")
        self.limit_val = count
        return self

    def reverse(self, descending: bool = True) -> "DocumentQueryBuilder[T]":
        """Orders results by the Sort Key descending (ascending is the default)."""
        self.scan_forward = not descending
        return self

    def filter(self, condition: "Condition | None") -> "DocumentQueryBuilder[T]":
        """
        Adds a filter condition on non-key attributes.

        Multiple calls to filter() are combined with AND; ``None`` is ignored
        so ``equality_filter({})`` can be passed straight through.

        Usage:
            CallbackRequest.ordered_by("timestamp").filter(Attr("status") == "New")
        """
        if condition is None:
            return self

        from .conditions import wrap_condition

        new_condition = wrap_condition(condition)
        if self.filter_condition is not None:
            self.filter_condition = self.filter_condition & new_condition
        else:
            self.filter_condition = new_condition
        return self

    # --- EXECUTION STRATEGIES ---

    def _build_kwargs(self) -> dict[str, Any]:
        key_expr = "#pk = :pk"
        if self.sk_condition:
            key_expr += f" AND {self.sk_condition}"

        all_values = dict(self.expression_values)
        all_names = dict(self.expression_names)

        kwargs: dict[str, Any] = {
            "TableName": self.config.table_name,
            "KeyConditionExpression": key_expr,
            "ExpressionAttributeValues": all_values,
            "ExpressionAttributeNames": all_names,
            "ScanIndexForward": self.scan_forward,
        }

        if self.index_name:
            kwargs["IndexName"] = self.index_name

        if self.filter_condition is not None:
            from .conditions import compile_condition

            filter_params = compile_condition(self.filter_condition, self.serializer)
            kwargs["FilterExpression"] = filter_params["ConditionExpression"]
            all_names.update(filter_params.get("ExpressionAttributeNames", {}))
            all_values.update(filter_params.get("ExpressionAttributeValues", {}))

        return kwargs

    def _cursor_for(self, item: dict[str, Any]) -> dict[str, Any]:
        """
        Builds the start-after cursor for a raw document.

        A GSI continuation key needs the table key plus the index keys, all
        of which every document in the index carries.
        """
        names = [self.config.pk_name]
        if self.index_name:
            names.append(self.pk_name)
            if self.sk_name:
                names.append(self.sk_name)
        key = {name: item[name] for name in names if name in item}
        return self.serializer.serialize_cursor(key)

    def __iter__(self) -> Iterator[T]:
        """
        Lazy Execution: The query is sent to DynamoDB only when iteration starts.
        Uses a Paginator to automatically handle 'LastEvaluatedKey'.
        """
        kwargs = self._build_kwargs()

        logger.info(
            "Starting query iteration",
            extra={
                "table": self.config.table_name,
                "index": self.index_name,
                "pk_hash": redact_key(self.pk_val),
                "has_filter": self.filter_condition is not None,
                "limit": self.limit_val,
            },
        )

        with handle_store_errors(table_name=self.config.table_name):
            paginator = self.client.get_paginator("query")
            count = 0
            for page in paginator.paginate(**kwargs):
                for item in page["Items"]:
                    raw_data = self.serializer.from_dynamo(item)
                    yield self.model_cls._deserialize_item(raw_data)
                    count += 1
                    if self.limit_val and count >= self.limit_val:
                        return

    def all(self) -> list[T]:
        """
        Executes the query and consumes the entire iterator into a list.
        WARNING: Can consume high memory for large datasets.
        """
        return list(self)

    def first(self) -> T | None:
        """Executes the query fetching only the first result."""
        if self.limit_val is None:
            self.limit_val = 1

        try:
            return next(iter(self))
        except StopIteration:
            return None

    def page(self, start_after: dict[str, Any] | None = None) -> "PageResult[T]":
        """
        Executes the query and returns one page of results with its cursor.

        DynamoDB applies ``Limit`` before ``FilterExpression``, so a single
        request can come back short while matching documents remain. The
        query is re-issued from ``LastEvaluatedKey`` until the page is full
        or the index is exhausted. ``has_more`` is true iff the page is full.

        Args:
            start_after: Cursor of the last document of the previous page
                (``PageResult.cursor``); None for the first page.

        Usage:
            page1 = Invoice.ordered_by("timestamp").reverse().limit(10).page()
            page2 = Invoice.ordered_by("timestamp").reverse().limit(10).page(page1.cursor)
        """
        from .pagination import PageResult

        kwargs = self._build_kwargs()
        if start_after:
            kwargs["ExclusiveStartKey"] = self.serializer.deserialize_cursor(start_after)

        logger.info(
            "Executing query page",
            extra={
                "table": self.config.table_name,
                "index": self.index_name,
                "pk_hash": redact_key(self.pk_val),
                "has_filter": self.filter_condition is not None,
                "limit": self.limit_val,
                "has_cursor": start_after is not None,
            },
        )

        items: list[T] = []
        last_raw: dict[str, Any] | None = None
        requests = 0

        with handle_store_errors(table_name=self.config.table_name):
            while True:
                if self.limit_val:
                    kwargs["Limit"] = self.limit_val - len(items)
                response = self.client.query(**kwargs)
                requests += 1

                for raw in response.get("Items", []):
                    items.append(self.model_cls._deserialize_item(self.serializer.from_dynamo(raw)))
                    last_raw = raw

                last_key = response.get("LastEvaluatedKey")
                if not last_key or (self.limit_val and len(items) >= self.limit_val):
                    break
                kwargs["ExclusiveStartKey"] = last_key

        cursor = self._cursor_for(last_raw) if last_raw is not None else None
        has_more = self.limit_val is not None and len(items) == self.limit_val

        logger.debug(
            "Query page complete",
            extra={
                "table": self.config.table_name,
                "index": self.index_name,
                "count": len(items),
                "requests": requests,
                "has_more": has_more,
            },
        )

        return PageResult(items=items, cursor=cursor, has_more=has_more)
