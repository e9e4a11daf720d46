"""
Unit tests for DocumentModel operations with a mocked boto3 client.

Tests client management, get/save/delete requests and their logging.
"""

import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from propeas import Attr, Client, DocumentModel, Invoice, Lead
from propeas.exceptions import SerializationError, ThrottledError


@pytest.mark.unit
class TestClientManagement:
    """Test client injection and the lazy default."""

    def test_default_client_is_created_once(self, mock_client) -> None:
        DocumentModel.set_client(None)
        try:
            with patch("propeas.base.boto3.client", return_value=mock_client) as factory:
                assert Client._get_client() is mock_client
                assert Invoice._get_client() is mock_client
            factory.assert_called_once_with("dynamodb", region_name="ap-south-1")
        finally:
            DocumentModel.set_client(None)

    def test_set_client_is_shared_by_every_model(self, inject_mock_client) -> None:
        assert Client._get_client() is inject_mock_client
        assert Lead._get_client() is inject_mock_client

    def test_using_client_scopes_an_override(self, inject_mock_client) -> None:
        scoped = MagicMock()
        with DocumentModel.using_client(scoped):
            assert Client._get_client() is scoped
        assert Client._get_client() is inject_mock_client


@pytest.mark.unit
class TestGet:
    """Test the get() class method."""

    def test_get_existing(self, inject_mock_client) -> None:
        inject_mock_client.get_item.return_value = {
            "Item": {"id": {"S": "c1"}, "name": {"S": "Asha"}, "phoneNumber": {"S": "9000000001"}}
        }

        client = Client.get("c1")

        assert client.name == "Asha"
        assert client.phone == "9000000001"
        inject_mock_client.get_item.assert_called_once_with(
            TableName="clients", Key={"id": {"S": "c1"}}
        )

    def test_get_missing_returns_none(self, inject_mock_client) -> None:
        inject_mock_client.get_item.return_value = {}
        assert Client.get("nobody") is None

    def test_get_translates_errors(self, inject_mock_client) -> None:
        inject_mock_client.get_item.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "GetItem"
        )
        with pytest.raises(ThrottledError):
            Client.get("c1")

    def test_document_that_does_not_fit_is_a_serialization_error(self, inject_mock_client) -> None:
        inject_mock_client.get_item.return_value = {
            "Item": {"id": {"S": "inv-1"}, "amount": {"S": "ninety-nine"}}
        }

        with pytest.raises(SerializationError, match="does not fit Invoice: 1 invalid field") as exc_info:
            Invoice.get("inv-1")

        assert exc_info.value.original_error is not None


@pytest.mark.unit
class TestSave:
    """Test save()."""

    def test_save_writes_listing_and_shadows(self, inject_mock_client) -> None:
        lead = Lead(
            id="l1",
            name="Jane Doe",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        lead.save()

        item = inject_mock_client.put_item.call_args.kwargs["Item"]
        assert item["listing"] == {"S": "leads"}
        assert item["name_search"] == {"S": "jane doe"}
        assert item["created_at"] == {"S": "2024-01-01T00:00:00.000Z"}
        assert "ConditionExpression" not in inject_mock_client.put_item.call_args.kwargs

    def test_save_omits_none(self, inject_mock_client) -> None:
        Lead(id="l1").save()

        item = inject_mock_client.put_item.call_args.kwargs["Item"]
        assert "created_at" not in item
        assert "name_search" not in item

    def test_save_with_condition(self, inject_mock_client) -> None:
        Lead(id="l1", name="Jane").save(condition=Attr("id").not_exists())

        kwargs = inject_mock_client.put_item.call_args.kwargs
        assert "attribute_not_exists" in kwargs["ConditionExpression"]
        assert "id" in kwargs["ExpressionAttributeNames"].values()


@pytest.mark.unit
class TestDelete:
    """Test delete() and delete_item()."""

    def test_delete_by_id(self, inject_mock_client) -> None:
        Lead.delete("l1")
        inject_mock_client.delete_item.assert_called_once_with(
            TableName="leads", Key={"id": {"S": "l1"}}
        )

    def test_delete_item_uses_instance_id(self, inject_mock_client) -> None:
        Lead(id="l9").delete_item(condition=Attr("status") == "New")

        kwargs = inject_mock_client.delete_item.call_args.kwargs
        assert kwargs["Key"] == {"id": {"S": "l9"}}
        assert "ConditionExpression" in kwargs


@pytest.mark.unit
class TestLogging:
    """Test structured logging of store operations."""

    def test_operations_log_with_context(self, inject_mock_client, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="propeas")
        inject_mock_client.get_item.return_value = {}

        Client.get("c1")
        Lead(id="l1").save()

        assert "Fetching item" in caplog.text
        assert "Item not found" in caplog.text
        assert "Saving item" in caplog.text
        tables = {getattr(record, "table", None) for record in caplog.records}
        assert {"clients", "leads"} <= tables

    def test_keys_are_redacted(self, inject_mock_client, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="propeas")
        inject_mock_client.get_item.return_value = {}

        Client.get("jane@doe.com")

        for record in caplog.records:
            assert "jane@doe.com" not in str(record.__dict__)
