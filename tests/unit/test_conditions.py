"""
Unit tests for the condition DSL and the equality filters list screens use.
"""

import pytest
from boto3.dynamodb.conditions import Attr as Boto3Attr

from propeas.conditions import (
    Attr,
    StoreCondition,
    compile_condition,
    equality_filter,
    wrap_condition,
)
from propeas.serializer import DocumentSerializer


@pytest.mark.unit
class TestAttr:
    """Test Attr builders."""

    def test_comparisons_return_store_conditions(self) -> None:
        attr = Attr("amount")
        for condition in (
            attr == 1,
            attr != 1,
            attr < 1,
            attr <= 1,
            attr > 1,
            attr >= 1,
            attr.between(1, 2),
            attr.is_in([1, 2]),
            attr.exists(),
            attr.not_exists(),
        ):
            assert isinstance(condition, StoreCondition)

    def test_name_is_exposed(self) -> None:
        assert Attr("client_email").name == "client_email"
        assert repr(Attr("status")) == "Attr('status')"

    def test_operators_compose(self) -> None:
        combined = (Attr("status") == "New") & ~(Attr("email").begins_with("test")) | Attr(
            "phone"
        ).contains("98")
        assert isinstance(combined, StoreCondition)

    def test_raw_boto3_condition_is_wrapped(self) -> None:
        raw = Boto3Attr("status").eq("New")
        assert wrap_condition(raw).raw is raw

    def test_wrapping_rejects_other_types(self) -> None:
        with pytest.raises(TypeError, match="Expected StoreCondition"):
            wrap_condition("status = New")


@pytest.mark.unit
class TestEqualityFilter:
    """Test the filter built from a screen's dropdowns."""

    def test_no_filters(self) -> None:
        assert equality_filter(None) is None
        assert equality_filter({}) is None

    def test_blank_values_are_skipped(self) -> None:
        assert equality_filter({"status": "", "payment_status": None}) is None

    def test_single_filter(self) -> None:
        condition = equality_filter({"status": "New"})
        compiled = compile_condition(condition, DocumentSerializer())

        assert list(compiled["ExpressionAttributeNames"].values()) == ["status"]
        assert list(compiled["ExpressionAttributeValues"].values()) == [{"S": "New"}]

    def test_several_filters_are_anded(self) -> None:
        condition = equality_filter({"status": "verified", "city": "Pune", "floor": ""})
        compiled = compile_condition(condition, DocumentSerializer())

        assert " AND " in compiled["ConditionExpression"]
        assert sorted(compiled["ExpressionAttributeNames"].values()) == ["city", "status"]


@pytest.mark.unit
class TestCompileCondition:
    """Test compilation into request parameters."""

    def test_reserved_words_use_placeholders(self) -> None:
        compiled = compile_condition(Attr("name") == "Jane", DocumentSerializer())

        assert "name" not in compiled["ConditionExpression"]
        assert "name" in compiled["ExpressionAttributeNames"].values()

    def test_values_use_wire_format(self) -> None:
        compiled = compile_condition(Attr("amount") >= 1000.5, DocumentSerializer())
        assert {"N": "1000.5"} in compiled["ExpressionAttributeValues"].values()

    def test_existence_check_has_no_values(self) -> None:
        compiled = compile_condition(Attr("id").not_exists(), DocumentSerializer())
        assert "attribute_not_exists" in compiled["ConditionExpression"]
        assert "ExpressionAttributeValues" not in compiled
