from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

import boto3
from pydantic import BaseModel, ConfigDict, model_validator
from pydantic import ValidationError as PydanticValidationError

# We must inherit from Pydantic's internal metaclass to coexist with BaseModel
from pydantic._internal._model_construction import ModelMetaclass

if TYPE_CHECKING:
    from .conditions import Condition  # Avoid circular import
    from .updates import UpdateBuilder


from ._logging import logger, redact_key
from .config import CollectionOptions, IndexDefinition, get_settings
from .exceptions import SerializationError, handle_store_errors
from .query import DocumentQueryBuilder
from .search import normalize_term
from .serializer import DocumentSerializer

# Generic TypeVar to allow methods like .get() to return the correct subclass type (Client)
T = TypeVar("T", bound="DocumentModel")


class DocumentMeta(ModelMetaclass):
    """
    Reads the collection layout of a model once, when the class is defined.

    It collects the document key, the listing attribute and every listing
    index from the field markers in ``propeas.fields``, stores them on
    ``cls._meta`` and swaps the class-level field attributes for ``Attr``
    builders so that ``Invoice.status == "Paid"`` yields a condition.
    """

    def __new__(
        cls, name: str, bases: tuple[type, ...], namespace: dict[str, Any], **kwargs: Any
    ) -> Any:
        # 1. Create the Pydantic class normally
        new_cls = super().__new__(cls, name, bases, namespace, **kwargs)

        # Stop processing if it's the base DocumentModel class itself
        if name == "DocumentModel":
            return new_cls

        # 2. Extract configuration from the inner 'Meta' class
        meta_cls = namespace.get("Meta")

        # If no Meta, try to inherit from a base class
        if not meta_cls:
            for base in bases:
                if hasattr(base, "_meta"):
                    new_cls._meta = base._meta  # type: ignore[attr-defined]
                    cls._instrument(new_cls)
                    return new_cls

            raise ValueError(f"Model {name} is missing a 'class Meta' with 'collection'.")

        if not hasattr(meta_cls, "collection"):
            raise ValueError(f"Model {name} is missing a 'collection' in class Meta.")

        # 3. Scan fields for the flags injected by fields.Key(), ListingKey(), ...
        pk_name: str | None = None
        listing_attribute: str | None = None
        listing_value: str | None = None
        index_sort_keys: dict[str, str] = {}
        search_sources: dict[str, str] = {}

        # model_fields is a Pydantic attribute added at class creation - mypy sees incomplete type
        for field_name, field_info in new_cls.model_fields.items():  # type: ignore[attr-defined]
            extra = field_info.json_schema_extra
            if not extra or not isinstance(extra, dict):
                continue

            if extra.get("_store_pk"):
                if pk_name is not None:
                    raise ValueError(f"Model {name} can have only one field defined with Key()")
                pk_name = field_name

            if extra.get("_store_listing"):
                if listing_attribute is not None:
                    raise ValueError(f"Model {name} can have only one ListingKey() field")
                listing_attribute = field_name
                listing_value = field_info.default

            if "_store_index_sk" in extra:
                index_name = str(extra["_store_index_sk"])
                if index_name in index_sort_keys:
                    raise ValueError(
                        f"Index '{index_name}' in model {name} can have only one sort key"
                    )
                index_sort_keys[index_name] = field_name

            if "_store_search_source" in extra:
                source = str(extra["_store_search_source"])
                if source not in new_cls.model_fields:  # type: ignore[attr-defined]
                    raise ValueError(
                        f"Search field '{field_name}' in model {name} shadows unknown field '{source}'"
                    )
                search_sources[field_name] = source

        if not pk_name:
            raise ValueError(f"Model {name} must have exactly one field defined with Key()")

        if index_sort_keys and not listing_attribute:
            raise ValueError(
                f"Model {name} declares listing indexes but has no ListingKey() field"
            )

        # 4. Every index is partitioned on the listing attribute
        index_definitions: dict[str, IndexDefinition] = {}
        for index_name, sk_name in index_sort_keys.items():
            index_definitions[index_name] = IndexDefinition(
                index_name=index_name,
                pk_name=listing_attribute,  # type: ignore[arg-type]
                sk_name=sk_name,
            )

        # 5. Attach the processed configuration to the class
        # We use a protected attribute '_meta' to avoid colliding with user fields
        new_cls._meta = CollectionOptions(  # type: ignore[attr-defined]
            collection=meta_cls.collection,
            pk_name=pk_name,
            listing_attribute=listing_attribute,
            listing_value=listing_value,
            index_definitions=index_definitions,
            search_sources=search_sources,
        )

        cls._instrument(new_cls)
        return new_cls

    @staticmethod
    def _instrument(new_cls: Any) -> None:
        # Replaces the Pydantic field descriptors on the class with Attr() builders,
        # enabling Invoice.amount >= 1000. Instance attribute access still returns values.
        from .conditions import Attr

        for field_name in new_cls.model_fields:
            setattr(new_cls, field_name, Attr(field_name))


class DocumentModel(BaseModel, metaclass=DocumentMeta):
    """
    The Base Class every collection model inherits from.
    Combines Pydantic validation with DynamoDB operations.

    Store documents predate these models and carry legacy or unknown
    attributes, so extra attributes are ignored rather than rejected.
    """

    # Type Hinting for the configuration injected by Metaclass
    _meta: ClassVar[CollectionOptions]

    # Internal utilities (Serializer & Client)
    _serializer: ClassVar[DocumentSerializer] = DocumentSerializer()
    _client: ClassVar[Any | None] = None
    _client_context: ClassVar[ContextVar[Any | None]] = ContextVar("store_client", default=None)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="after")
    def sync_search_shadows(self) -> "DocumentModel":
        for shadow, source in self._meta.search_sources.items():
            value = normalize_term(getattr(self, source))
            # "" would still place the document in the search index
            object.__setattr__(self, shadow, value or None)
        return self

    @classmethod
    def _get_client(cls) -> Any:
        """
        Returns a Boto3 DynamoDB Client.
        Uses a singleton pattern to avoid multiple instantiations.

        Returns:
            Boto3 DynamoDB Client instance.
        """
        # 1. Check ContextVar (Thread-safe/Async-safe override)
        ctx_client = cls._client_context.get()
        if ctx_client is not None:
            return ctx_client

        # 2. Check Global Default
        if DocumentModel._client is not None:
            return DocumentModel._client

        # 3. Initialize Default Global Client
        DocumentModel._client = boto3.client("dynamodb", region_name=get_settings().aws_region)
        return DocumentModel._client

    @classmethod
    @contextmanager
    def using_client(cls, client: Any) -> Generator[None, None, None]:
        """
        Context manager to properly scope a client to a block of code.
        Thread-safe and Async-safe using contextvars.

        Usage:
            with DocumentModel.using_client(my_client):
                Client.get("...")
        """
        token = cls._client_context.set(client)
        try:
            yield
        finally:
            cls._client_context.reset(token)

    @classmethod
    def set_client(cls, client: Any | None) -> None:
        """
        Installs the process-wide client shared by every collection model.
        Useful for testing or custom endpoints (``None`` restores the lazy default).
        """
        DocumentModel._client = client

    @classmethod
    def get(cls: type[T], pk: Any) -> T | None:
        """
        Fetches a document by id.
        Returns an instance of the class (e.g., Client) or None.
        """
        config = cls._meta

        key_dict = {config.pk_name: pk}
        dynamo_key = cls._serializer.to_dynamo(key_dict)

        client = cls._get_client()

        logger.debug(
            "Fetching item",
            extra={
                "table": config.table_name,
                "key_hash": redact_key(key_dict),
                "operation": "get",
            },
        )

        with handle_store_errors(table_name=config.table_name):
            response = client.get_item(TableName=config.table_name, Key=dynamo_key)

        if "Item" not in response:
            logger.info(
                "Item not found",
                extra={"table": config.table_name, "operation": "get", "pk_hash": redact_key(pk)},
            )
            return None

        raw_data = cls._serializer.from_dynamo(response["Item"])
        return cls._deserialize_item(raw_data)

    @classmethod
    def delete(cls, pk: Any, condition: "Condition | None" = None) -> None:
        """
        Deletes a document by id (Class Method).
        Efficient because it doesn't require fetching the document first.

        Args:
            pk: Document id
            condition: Optional condition that must be satisfied for the delete to succeed.

        Usage:
            Employee.delete("uid-123")
        """
        config = cls._meta
        client = cls._get_client()

        key_dict = {config.pk_name: pk}
        kwargs: dict[str, Any] = {
            "TableName": config.table_name,
            "Key": cls._serializer.to_dynamo(key_dict),
        }

        if condition is not None:
            from .conditions import compile_condition

            kwargs.update(compile_condition(condition, cls._serializer))

        logger.info(
            "Deleting item",
            extra={
                "table": config.table_name,
                "operation": "delete",
                "key_hash": redact_key(key_dict),
                "has_condition": condition is not None,
            },
        )

        with handle_store_errors(table_name=config.table_name):
            client.delete_item(**kwargs)

    def delete_item(self, condition: "Condition | None" = None) -> None:
        """Deletes the current instance from the store."""
        self.delete(pk=getattr(self, self._meta.pk_name), condition=condition)

    @classmethod
    def update(cls: type[T], pk: Any) -> "UpdateBuilder":
        """
        Starts an update builder chain for this document.

        The builder guards the write with ``attribute_exists`` on the id, so
        updating a document that is not there raises DocumentNotFoundError
        instead of creating a half-empty one.

        Usage:
            Invoice.update("inv-1") \\
                .set(Invoice.status, "Paid") \\
                .execute()
        """
        from .updates import UpdateBuilder

        return UpdateBuilder(cls, pk)

    def patch(self: T) -> "UpdateBuilder":
        """Starts an update builder chain for this instance."""
        from .updates import UpdateBuilder

        return UpdateBuilder(self.__class__, getattr(self, self._meta.pk_name))

    def save(self, condition: "Condition | None" = None) -> None:
        """
        Persists the current instance.

        Args:
            condition: Optional condition that must be satisfied for the write to succeed.

        Usage:
            lead.save()
            lead.save(condition=Attr("id").not_exists())
        """
        config = self._meta

        # 1. Dump Pydantic model to dict (preserving types like Sets for serializer)
        data = self.model_dump(mode="python", exclude_none=True)

        # 2. Convert to DynamoDB Format (handling Floats -> Decimals)
        dynamo_item = self._serializer.to_dynamo(data)

        kwargs: dict[str, Any] = {
            "TableName": config.table_name,
            "Item": dynamo_item,
        }

        if condition is not None:
            from .conditions import compile_condition

            kwargs.update(compile_condition(condition, self._serializer))

        client = self._get_client()

        pk_val = getattr(self, config.pk_name)
        logger.info(
            "Saving item",
            extra={
                "table": config.table_name,
                "operation": "save",
                "pk_hash": redact_key(pk_val),
                "has_condition": condition is not None,
            },
        )

        if condition is not None:
            logger.debug(
                "Save condition details",
                extra={
                    "table": config.table_name,
                    "operation": "save",
                    "condition_expression": kwargs.get("ConditionExpression"),
                },
            )

        with handle_store_errors(table_name=config.table_name):
            client.put_item(**kwargs)

    @classmethod
    def query_index(cls: type[T], index_name: str, pk_val: Any = None) -> DocumentQueryBuilder[T]:
        """
        Starts a Query Builder chain for a listing index.

        Args:
            index_name: Name of the GSI to query
            pk_val: Partition value; defaults to the collection's listing value

        Usage:
            Invoice.query_index("timestamp-index").reverse().limit(10).page()

        Raises:
            ValueError: If the index is not defined on the model
        """
        if not cls._meta.has_index(index_name):
            raise ValueError(
                f"Index '{index_name}' is not defined on model {cls.__name__}. "
                f"Available indexes: {list(cls._meta.index_definitions.keys())}"
            )
        if pk_val is None:
            pk_val = cls._meta.listing_value
        return DocumentQueryBuilder(cls, pk_val, index_name=index_name)

    @classmethod
    def ordered_by(cls: type[T], order_by: str) -> DocumentQueryBuilder[T]:
        """
        Starts a query over the whole collection ordered by ``order_by``.

        Usage:
            Client.ordered_by("created_at").reverse().limit(10).page()

        Raises:
            ValueError: If no listing index is sorted on ``order_by``
        """
        index = cls._meta.index_sorted_by(order_by)
        if index is None:
            raise ValueError(f"Model {cls.__name__} has no listing index sorted on '{order_by}'")
        return cls.query_index(index.index_name)

    @classmethod
    def _deserialize_item(cls: type[T], raw_data: dict[str, Any]) -> T:
        """
        Builds a model from a plain document (normalizers run here).

        Raises:
            SerializationError: If the stored document does not fit the model
        """
        try:
            return cls.model_validate(raw_data)
        except PydanticValidationError as e:
            logger.warning(
                "Stored document does not fit the model",
                extra={
                    "table": cls._meta.table_name,
                    "key_hash": redact_key(raw_data.get(cls._meta.pk_name)),
                    "error_count": e.error_count(),
                },
            )
            raise SerializationError(
                f"Document in '{cls._meta.collection}' does not fit {cls.__name__}: "
                f"{e.error_count()} invalid field(s)",
                original_error=e,
            ) from e
