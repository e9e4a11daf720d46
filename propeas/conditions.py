"""
Filter and write-condition DSL for Propeas.

This module provides a StoreCondition wrapper and Attr builder that create
condition expressions compatible with DynamoDB's FilterExpression and
ConditionExpression. Expression building is delegated to boto3's
ConditionExpressionBuilder while boto3 internals stay out of the public API.

Design:
- StoreCondition wraps boto3 ConditionBase, stored in .raw attribute
- Attr builder wraps boto3 Attr internally, returns StoreCondition
- Operators &, |, ~ on StoreCondition produce new StoreCondition instances
- At compilation time, StoreCondition.raw is fed to boto3's builder

Usage:
    from propeas import Attr

    # Equality filters used by list screens
    CallbackRequest.query_index(...).filter(Attr("status") == "New")

    # Composed conditions
    condition = (Attr("status") == "pending") & Attr("submittedBy").exists()
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Union

from boto3.dynamodb.conditions import And as Boto3And
from boto3.dynamodb.conditions import Attr as Boto3Attr
from boto3.dynamodb.conditions import ConditionBase as Boto3ConditionBase
from boto3.dynamodb.conditions import Not as Boto3Not
from boto3.dynamodb.conditions import Or as Boto3Or

if TYPE_CHECKING:
    from .serializer import DocumentSerializer

# Type alias for condition parameter (StoreCondition or raw boto3 for passthrough)
Condition = Union["StoreCondition", Boto3ConditionBase]


class StoreCondition:
    """
    Propeas-owned wrapper for DynamoDB condition expressions.

    Wraps a boto3 condition object (stored in .raw) and provides Python
    operators for composing conditions. Users typically don't instantiate
    this directly - use Attr() instead.
    """

    __slots__ = ("raw",)

    def __init__(self, raw: Boto3ConditionBase) -> None:
        self.raw = raw

    def __and__(self, other: Condition) -> StoreCondition:
        return StoreCondition(Boto3And(self.raw, _extract_raw(other)))

    def __rand__(self, other: Condition) -> StoreCondition:
        return StoreCondition(Boto3And(_extract_raw(other), self.raw))

    def __or__(self, other: Condition) -> StoreCondition:
        return StoreCondition(Boto3Or(self.raw, _extract_raw(other)))

    def __ror__(self, other: Condition) -> StoreCondition:
        return StoreCondition(Boto3Or(_extract_raw(other), self.raw))

    def __invert__(self) -> StoreCondition:
        return StoreCondition(Boto3Not(self.raw))

    def __repr__(self) -> str:
        return f"StoreCondition({self.raw!r})"


class Attr:
    """
    Represents a document attribute for building conditions.

    All methods return StoreCondition instances (not raw boto3 objects).

    Usage:
        Attr("status") == "Pending"
        Attr("amount") >= 1000
        Attr("email").begins_with("jane")
        Attr("status").is_in(["New", "Contacted"])
        Attr("id").exists()
    """

    __slots__ = ("name", "_boto3_attr")

    def __init__(self, name: str) -> None:
        self.name = name
        self._boto3_attr = Boto3Attr(name)

    def __eq__(self, value: Any) -> StoreCondition:  # type: ignore[override]
        return StoreCondition(self._boto3_attr.eq(value))

    def __ne__(self, value: Any) -> StoreCondition:  # type: ignore[override]
        return StoreCondition(self._boto3_attr.ne(value))

    def __lt__(self, value: Any) -> StoreCondition:
        return StoreCondition(self._boto3_attr.lt(value))

    def __le__(self, value: Any) -> StoreCondition:
        return StoreCondition(self._boto3_attr.lte(value))

    def __gt__(self, value: Any) -> StoreCondition:
        return StoreCondition(self._boto3_attr.gt(value))

    def __ge__(self, value: Any) -> StoreCondition:
        return StoreCondition(self._boto3_attr.gte(value))

    def exists(self) -> StoreCondition:
        """Checks if the attribute exists."""
        return StoreCondition(self._boto3_attr.exists())

    def not_exists(self) -> StoreCondition:
        """Checks if the attribute does NOT exist."""
        return StoreCondition(self._boto3_attr.not_exists())

    def begins_with(self, prefix: str) -> StoreCondition:
        """Checks if string attribute begins with prefix."""
        return StoreCondition(self._boto3_attr.begins_with(prefix))

    def contains(self, value: Any) -> StoreCondition:
        """
        Checks if attribute contains value.

        For strings: substring match
        For lists/sets: membership check
        """
        return StoreCondition(self._boto3_attr.contains(value))

    def between(self, low: Any, high: Any) -> StoreCondition:
        """Checks if attribute is between low and high (inclusive)."""
        return StoreCondition(self._boto3_attr.between(low, high))

    def is_in(self, values: list[Any]) -> StoreCondition:
        """Checks if attribute value is in the provided list."""
        return StoreCondition(self._boto3_attr.is_in(values))

    def __repr__(self) -> str:
        return f"Attr({self.name!r})"


def _extract_raw(condition: Condition) -> Boto3ConditionBase:
    """
    Extracts the boto3 condition from either StoreCondition or raw boto3 condition.

    Raises:
        TypeError: If condition is neither StoreCondition nor boto3 ConditionBase
    """
    if isinstance(condition, StoreCondition):
        return condition.raw
    elif isinstance(condition, Boto3ConditionBase):
        return condition
    else:
        raise TypeError(
            f"Expected StoreCondition or boto3 ConditionBase, got {type(condition).__name__}"
        )


def wrap_condition(condition: Condition) -> StoreCondition:
    """Ensures a condition is wrapped in StoreCondition."""
    if isinstance(condition, StoreCondition):
        return condition
    return StoreCondition(_extract_raw(condition))


def equality_filter(filters: Mapping[str, Any] | None) -> StoreCondition | None:
    """
    Builds an AND of ``Attr(name) == value`` for every non-empty filter.

    Blank values are skipped, so a screen's "All statuses" option (an empty
    string) means no filter rather than "status equals ''".

    Usage:
        equality_filter({"status": "Pending"})  # Attr("status") == "Pending"
        equality_filter({"status": ""})         # None
    """
    combined: StoreCondition | None = None
    for name, value in (filters or {}).items():
        if value is None or value == "":
            continue
        condition = Attr(name) == value
        combined = condition if combined is None else combined & condition
    return combined


def compile_condition(
    condition: Condition,
    serializer: DocumentSerializer,
) -> dict[str, Any]:
    """
    Compiles a condition into DynamoDB request parameters.

    Uses boto3's ConditionExpressionBuilder to generate:
    - ConditionExpression (string)
    - ExpressionAttributeNames (dict)
    - ExpressionAttributeValues (dict)

    Args:
        condition: A StoreCondition or raw boto3 condition object
        serializer: DocumentSerializer for converting values to DynamoDB format

    Returns:
        Dict with ConditionExpression, and optionally ExpressionAttributeNames
        and ExpressionAttributeValues (only included if non-empty)
    """
    from boto3.dynamodb.conditions import ConditionExpressionBuilder

    boto3_condition = _extract_raw(condition)

    # boto3's builder handles reserved keywords ("name", "status") and placeholders
    builder = ConditionExpressionBuilder()
    expression = builder.build_expression(boto3_condition, is_key_condition=False)

    result: dict[str, Any] = {
        "ConditionExpression": expression.condition_expression,
    }

    if expression.attribute_name_placeholders:
        result["ExpressionAttributeNames"] = dict(expression.attribute_name_placeholders)

    if expression.attribute_value_placeholders:
        # boto3's builder uses placeholder names like :v0, :v1; values still
        # need the low-level {"S": ...} encoding
        serialized_values = {}
        for placeholder, value in expression.attribute_value_placeholders.items():
            serialized_values[placeholder] = serializer.to_dynamo_value(value)
        result["ExpressionAttributeValues"] = serialized_values

    return result
