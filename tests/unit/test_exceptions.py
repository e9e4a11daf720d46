"""
Unit tests for the exception hierarchy and handle_store_errors, which
translates botocore failures into PropeasError subclasses.
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from propeas.exceptions import (
    AuthenticationError,
    AuthorizationError,
    CollectionNotFoundError,
    DocumentNotFoundError,
    MutationError,
    PropeasError,
    RequestTimeoutError,
    StorageError,
    StoreUnavailableError,
    StoreValidationError,
    ThrottledError,
    ValidationError,
    handle_store_errors,
)


def client_error(code: str, message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "Query")


@pytest.mark.unit
class TestExceptionHierarchy:
    """Test the exception classes."""

    def test_base_keeps_message_and_cause(self) -> None:
        cause = RuntimeError("socket closed")
        error = PropeasError("Wrapped", original_error=cause)
        assert error.message == "Wrapped"
        assert error.original_error is cause
        assert str(error) == "Wrapped"

    def test_every_error_is_a_propeas_error(self) -> None:
        for error in (
            CollectionNotFoundError("clients"),
            DocumentNotFoundError({"id": "c1"}),
            ThrottledError(),
            RequestTimeoutError(),
            StoreUnavailableError(),
            StoreValidationError("bad"),
            ValidationError("bad", field="phone"),
            AuthenticationError("nope", code="wrong-password"),
            AuthorizationError(),
            MutationError("Failed to update client. Please try again."),
            StorageError("properties/p1/a.jpg"),
        ):
            assert isinstance(error, PropeasError)

    def test_authorization_default_message(self) -> None:
        assert AuthorizationError().message == "You are not authorized to view this page."

    def test_fields_are_exposed(self) -> None:
        assert CollectionNotFoundError("leads").table_name == "leads"
        assert DocumentNotFoundError({"id": "x"}).key == {"id": "x"}
        assert ValidationError("bad", field="phone").field == "phone"
        assert AuthenticationError("nope", code="user-disabled").code == "user-disabled"
        assert StorageError("a/b.jpg").path == "a/b.jpg"


@pytest.mark.unit
class TestHandleStoreErrors:
    """Test translation of botocore errors."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("ResourceNotFoundException", CollectionNotFoundError),
            ("ConditionalCheckFailedException", DocumentNotFoundError),
            ("ProvisionedThroughputExceededException", ThrottledError),
            ("ThrottlingException", ThrottledError),
            ("RequestLimitExceeded", ThrottledError),
            ("ValidationException", StoreValidationError),
            ("SerializationException", StoreValidationError),
            ("RequestTimeout", RequestTimeoutError),
        ],
    )
    def test_known_codes(self, code, expected) -> None:
        with pytest.raises(expected) as exc:
            with handle_store_errors(table_name="invoices"):
                raise client_error(code)
        assert isinstance(exc.value.original_error, ClientError)

    def test_missing_table_names_the_table(self) -> None:
        with pytest.raises(CollectionNotFoundError) as exc:
            with handle_store_errors(table_name="leads"):
                raise client_error("ResourceNotFoundException")
        assert exc.value.table_name == "leads"

    def test_unknown_code_is_generic(self) -> None:
        with pytest.raises(PropeasError, match=r"DynamoDB error \(AccessDeniedException\): denied"):
            with handle_store_errors():
                raise client_error("AccessDeniedException", "denied")

    def test_connection_failure_is_unavailable(self) -> None:
        with pytest.raises(StoreUnavailableError):
            with handle_store_errors():
                raise EndpointConnectionError(endpoint_url="https://dynamodb.ap-south-1.amazonaws.com")

    def test_other_exceptions_pass_through(self) -> None:
        with pytest.raises(KeyError):
            with handle_store_errors():
                raise KeyError("Items")
