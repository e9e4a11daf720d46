from typing import Any

from pydantic import Field


def Key(default: Any = ..., **kwargs: Any) -> Any:
    """
    Marks a Pydantic field as the document id (DynamoDB partition key).

    Usage:
        id: str = Key()

    Architectural Note:
    -------------------
    This function wraps the standard Pydantic Field. It injects a hidden flag
    ('_store_pk') into 'json_schema_extra'. The DocumentMeta metaclass will
    inspect this flag at class creation time to identify the primary key
    without requiring the user to explicitly define it in Meta.
    """
    json_schema_extra = kwargs.pop("json_schema_extra", {})
    json_schema_extra["_store_pk"] = True

    if "default_factory" in kwargs:
        return Field(json_schema_extra=json_schema_extra, **kwargs)

    # The '...' (Ellipsis) is Pydantic's way of saying "Required field" if no default is provided.
    return Field(default, json_schema_extra=json_schema_extra, **kwargs)


def ListingKey(default: str, **kwargs: Any) -> Any:
    """
    Marks the constant partition attribute shared by a model's listing indexes.

    Every document of a collection carries the same value here (the
    collection name), so a GSI partitioned on it holds the whole collection
    ordered by that index's sort key. That is what makes cursor pagination
    over "all invoices by timestamp" possible in DynamoDB.

    Usage:
        listing: str = ListingKey(default="invoices")
    """
    json_schema_extra = kwargs.pop("json_schema_extra", {})
    json_schema_extra["_store_listing"] = True
    return Field(default, json_schema_extra=json_schema_extra, **kwargs)


def IndexSortKey(index_name: str, default: Any = None, **kwargs: Any) -> Any:
    """
    Marks a Pydantic field as the sort key of a listing index.

    Documents without a value for the field are absent from the index
    (DynamoDB GSIs are sparse), which matches how an ``orderBy`` on a
    missing field drops the document from the result.

    Usage:
        timestamp: datetime | None = IndexSortKey("timestamp-index")

    Args:
        index_name: Name of the Global Secondary Index
        default: Default value for the field
        **kwargs: Additional Pydantic Field arguments

    Returns:
        Pydantic Field instance with index metadata
    """
    json_schema_extra = kwargs.pop("json_schema_extra", {})
    json_schema_extra["_store_index_sk"] = index_name
    return Field(default, json_schema_extra=json_schema_extra, **kwargs)


def SearchKey(source_field: str, index_name: str, **kwargs: Any) -> Any:
    """
    Marks a lower-cased shadow of ``source_field`` used for prefix search.

    The shadow is the sort key of its own listing index; it is recomputed
    from the source field on every validation and on every ``update().set()``
    of the source, so it never has to be written by hand.

    Usage:
        name: str = ""
        name_search: str | None = SearchKey("name", "name_search-index")
    """
    json_schema_extra = kwargs.pop("json_schema_extra", {})
    json_schema_extra["_store_index_sk"] = index_name
    json_schema_extra["_store_search_source"] = source_field
    return Field(None, json_schema_extra=json_schema_extra, **kwargs)
