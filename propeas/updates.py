"""
Partial document updates for Propeas.

Edits made on the dashboard only touch the fields the user changed, the
way a document store's ``updateDoc`` does. This module builds DynamoDB
UpdateExpressions (SET and REMOVE) from those changes, validating every
value against the model's field type first.

Usage:
    Invoice.update("inv-1") \\
        .set(Invoice.status, "Paid") \\
        .set(Invoice.updated_at, now) \\
        .execute()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError as PydanticValidationError
from pydantic.type_adapter import TypeAdapter

from ._logging import logger, redact_key
from .conditions import Attr, Condition, compile_condition
from .exceptions import ValidationError, handle_store_errors
from .search import normalize_term

if TYPE_CHECKING:
    from .base import DocumentModel


class UpdateAction(ABC):
    """Base class for all update actions."""

    def __init__(self, field: Attr | str, value: Any = None) -> None:
        self.field_name = field.name if isinstance(field, Attr) else field
        self.value = value

    @abstractmethod
    def validate(self, model_cls: type[DocumentModel]) -> Any:
        """
        Validates the value against the model field definition.
        Returns the validated value (which might be coerced).
        """

    def _get_field_info(self, model_cls: type[DocumentModel]) -> Any:
        return model_cls.model_fields.get(self.field_name)


class Set(UpdateAction):
    """
    Represents a SET action.
    Client.update(...).set(Client.name, "New Name")
    """

    def validate(self, model_cls: type[DocumentModel]) -> Any:
        # Set(field, None) is compiled to a REMOVE
        if self.value is None:
            return None

        field = self._get_field_info(model_cls)
        if field:
            try:
                adapter = TypeAdapter(field.annotation)
                return adapter.validate_python(self.value)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid value for '{self.field_name}': {self.value!r}", field=self.field_name
                ) from e
        return self.value


class Remove(UpdateAction):
    """
    Represents a REMOVE action.
    Client.update(...).remove(Client.legacy_field)
    """

    def __init__(self, field: Attr | str) -> None:
        super().__init__(field, value=None)

    def validate(self, model_cls: type[DocumentModel]) -> Any:
        return None


class UpdateBuilder:
    """
    Fluent builder for DynamoDB UpdateExpressions.

    Writes are guarded with ``attribute_exists`` on the document id, so an
    update never creates a document.
    """

    def __init__(self, model_cls: type[DocumentModel], pk: Any) -> None:
        self.model_cls = model_cls
        self.pk = pk
        self.actions: list[UpdateAction] = []
        self._condition: Condition | None = None
        self._return_values: str = "ALL_NEW"

    def set(self, field: Any, value: Any) -> UpdateBuilder:
        """Set a field value (``None`` removes the attribute)."""
        self.actions.append(Set(field, value))
        return self

    def set_many(self, changes: Mapping[str, Any]) -> UpdateBuilder:
        """
        Set several fields at once.

        Usage:
            Property.update(pid).set_many({"status": "Sold", "updated_at": now})
        """
        for name, value in changes.items():
            self.set(name, value)
        return self

    def remove(self, field: Attr | str) -> UpdateBuilder:
        """Remove a field."""
        self.actions.append(Remove(field))
        return self

    def condition(self, condition: Condition) -> UpdateBuilder:
        """Adds a condition on top of the existence guard."""
        self._condition = condition
        return self

    def return_values(
        self, return_values: Literal["NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"]
    ) -> UpdateBuilder:
        """Set the return values (``ALL_NEW`` by default, which returns the updated model)."""
        self._return_values = return_values
        return self

    def _with_search_shadows(self, actions: list[UpdateAction]) -> list[UpdateAction]:
        """Appends a SET of the matching ``*_search`` shadow for each changed source field."""
        sources = {source: shadow for shadow, source in self.model_cls._meta.search_sources.items()}
        shadowed: list[UpdateAction] = list(actions)
        for action in actions:
            shadow = sources.get(action.field_name)
            if shadow is None:
                continue
            value = normalize_term(action.value) if isinstance(action, Set) else None
            shadowed.append(Set(shadow, value or None))
        return shadowed

    def _compile(self) -> dict[str, Any]:
        """
        Compiles the actions into DynamoDB parameters:
        UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues
        and the ConditionExpression.
        """
        if not self.actions:
            raise ValueError("No update actions specified")

        set_actions: list[Set] = []
        remove_actions: list[Remove] = []

        for action in self._with_search_shadows(self.actions):
            validated_value = action.validate(self.model_cls)

            if isinstance(action, Set) and validated_value is None:
                remove_actions.append(Remove(action.field_name))
                continue

            action.value = validated_value
            if isinstance(action, Set):
                set_actions.append(action)
            elif isinstance(action, Remove):
                remove_actions.append(action)

        parts = []
        names: dict[str, str] = {}
        values: dict[str, Any] = {}

        # Prefix 'u' to avoid collision with condition placeholders (#n0, :v0)
        def get_name_ph(name: str) -> str:
            ph = f"#u_n{len(names)}"
            names[ph] = name
            return ph

        def get_value_ph(val: Any) -> str:
            ph = f":u_v{len(values)}"
            values[ph] = self.model_cls._serializer.to_dynamo_value(val)
            return ph

        if set_actions:
            clauses = [f"{get_name_ph(sa.field_name)} = {get_value_ph(sa.value)}" for sa in set_actions]
            parts.append("SET " + ", ".join(clauses))

        if remove_actions:
            clauses = [get_name_ph(ra.field_name) for ra in remove_actions]
            parts.append("REMOVE " + ", ".join(clauses))

        result: dict[str, Any] = {"UpdateExpression": " ".join(parts)}

        condition: Condition = Attr(self.model_cls._meta.pk_name).exists()
        if self._condition is not None:
            condition = condition & self._condition
        cond_params = compile_condition(condition, self.model_cls._serializer)
        result["ConditionExpression"] = cond_params["ConditionExpression"]
        names.update(cond_params.get("ExpressionAttributeNames", {}))
        values.update(cond_params.get("ExpressionAttributeValues", {}))

        if names:
            result["ExpressionAttributeNames"] = names
        if values:
            result["ExpressionAttributeValues"] = values

        return result

    def execute(self) -> Any:
        """
        Sends the update.

        Returns:
            The updated model when return values are ``ALL_NEW``, else the raw response.

        Raises:
            DocumentNotFoundError: If no document has this id (or the extra condition failed)
        """
        config = self.model_cls._meta
        key_dict = {config.pk_name: self.pk}

        params = self._compile()
        params["TableName"] = config.table_name
        params["Key"] = self.model_cls._serializer.to_dynamo(key_dict)
        params["ReturnValues"] = self._return_values

        client = self.model_cls._get_client()

        logger.info(
            "Executing partial update",
            extra={
                "table": config.table_name,
                "key_hash": redact_key(key_dict),
                "operation": "update",
                "action_count": len(self.actions),
                "has_condition": self._condition is not None,
            },
        )

        with handle_store_errors(table_name=config.table_name):
            response = client.update_item(**params)

        if self._return_values == "ALL_NEW" and "Attributes" in response:
            raw_data = self.model_cls._serializer.from_dynamo(response["Attributes"])
            return self.model_cls._deserialize_item(raw_data)

        return response
