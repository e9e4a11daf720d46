"""
Conversion between model dumps and DynamoDB attribute values.

Documents are shared with the mobile app, so the stored shapes stay plain:
- numbers go through ``Decimal`` (boto3 rejects floats) and come back as
  ``int`` when whole, else ``float``
- datetimes are stored as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC; the fixed
  width keeps lexical order on the listing indexes chronological
- sets are written as lists; string sets written by older clients are read
  back as sorted lists
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, cast
from uuid import UUID

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .exceptions import SerializationError


def store_timestamp(value: datetime) -> str:
    """Renders a datetime the way it is stored; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat(timespec="milliseconds") + "Z"


class DocumentSerializer:
    """Maps Python values to the low-level ``{"S": ...}`` format and back."""

    def __init__(self) -> None:
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def to_dynamo(self, data: dict[str, Any]) -> dict[str, dict[str, Any]]:
        """Serializes every attribute of a document or key."""
        item: dict[str, dict[str, Any]] = {}
        for name, value in data.items():
            try:
                item[name] = cast(dict[str, Any], self._serializer.serialize(self.to_store(value)))
            except TypeError as e:
                raise SerializationError(
                    f"Failed to serialize field '{name}'. value={value!r} error={e!s}",
                    original_error=e,
                ) from e
        return item

    def to_dynamo_value(self, value: Any) -> dict[str, Any]:
        """Serializes one expression value, e.g. ``1499.99 -> {"N": "1499.99"}``."""
        try:
            return cast(dict[str, Any], self._serializer.serialize(self.to_store(value)))
        except TypeError as e:
            raise SerializationError(
                f"Failed to serialize value '{value}'. error={e!s}", original_error=e
            ) from e

    def from_dynamo(self, item: dict[str, Any]) -> dict[str, Any]:
        return {name: self.from_store(self._deserializer.deserialize(v)) for name, v in item.items()}

    def serialize_cursor(self, last_key: dict[str, Any]) -> dict[str, Any]:
        """
        Turns a DynamoDB key into the plain cursor the controller keeps.

        Input:  {"id": {"S": "abc"}, "timestamp": {"S": "2024-01-01T00:00:00.000Z"}}
        Output: {"id": "abc", "timestamp": "2024-01-01T00:00:00.000Z"}
        """
        return self.from_dynamo(last_key)

    def deserialize_cursor(self, cursor: dict[str, Any]) -> dict[str, Any]:
        """Turns a cursor back into an ``ExclusiveStartKey``."""
        return self.to_dynamo(cursor)

    def to_store(self, value: Any) -> Any:
        """Python value -> value boto3's TypeSerializer accepts."""
        if isinstance(value, bool) or value is None:
            return value
        if isinstance(value, float):
            # str() first so 0.1 stays 0.1 rather than its binary expansion
            return Decimal(str(value))
        if isinstance(value, datetime):
            return store_timestamp(value)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, (UUID, Enum)):
            return value.value if isinstance(value, Enum) else str(value)
        if isinstance(value, (set, frozenset)):
            return sorted((self.to_store(v) for v in value), key=str)
        if isinstance(value, (list, tuple)):
            return [self.to_store(v) for v in value]
        if isinstance(value, dict):
            return {k: self.to_store(v) for k, v in value.items()}
        return value

    def from_store(self, value: Any) -> Any:
        """Deserialized boto3 value -> plain Python (no Decimals, no sets)."""
        if isinstance(value, Decimal):
            return int(value) if value % 1 == 0 else float(value)
        if isinstance(value, (set, frozenset)):
            return sorted(self.from_store(v) for v in value)
        if isinstance(value, list):
            return [self.from_store(v) for v in value]
        if isinstance(value, dict):
            return {k: self.from_store(v) for k, v in value.items()}
        return value
