from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError


class PropeasError(Exception):
    """Base exception for all Propeas errors."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class CollectionNotFoundError(PropeasError):
    """Raised when the table backing a collection does not exist."""

    def __init__(self, table_name: str, original_error: Exception | None = None) -> None:
        super().__init__(f"Collection '{table_name}' not found", original_error)
        self.table_name = table_name


class DocumentNotFoundError(PropeasError):
    """Raised when a mutation targets a document that is not there."""

    def __init__(self, key: dict[str, Any], original_error: Exception | None = None) -> None:
        super().__init__(f"Document with key {key} not found", original_error)
        self.key = key


class ThrottledError(PropeasError):
    """Raised when the document store throttles requests."""

    def __init__(
        self, message: str = "Request rate exceeded", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)


class RequestTimeoutError(PropeasError):
    """Raised when a request to the document store times out."""

    def __init__(
        self, message: str = "Request timed out", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)


class StoreUnavailableError(PropeasError):
    """Raised when the document store cannot be reached at all."""

    def __init__(
        self, message: str = "Document store unavailable", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)


class StoreValidationError(PropeasError):
    """Raised when the document store rejects a request as malformed."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error)
        self.field = field
        self.value = value


class SerializationError(PropeasError):
    """Raised when a value cannot be stored, or a stored document does not fit its model."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message, original_error)


class ValidationError(PropeasError):
    """Raised by services when form input is rejected before any write."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class AuthenticationError(PropeasError):
    """Raised by identity providers when sign-in fails."""

    def __init__(
        self, message: str, code: str = "Unknown", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)
        self.code = code


class AuthorizationError(PropeasError):
    """Raised when the current identity may not open a screen or run an action."""

    def __init__(self, message: str = "You are not authorized to view this page.") -> None:
        super().__init__(message)


class MutationError(PropeasError):
    """Raised by services when a write fails; ``message`` is fit to show the user."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message, original_error)


class StorageError(PropeasError):
    """Raised when an object storage upload fails."""

    def __init__(self, path: str, original_error: Exception | None = None) -> None:
        super().__init__(f"Failed to upload '{path}'", original_error)
        self.path = path


@contextmanager
def handle_store_errors(table_name: str | None = None) -> Generator[None, None, None]:
    """
    Context manager that catches botocore errors
    and raises the appropriate PropeasError subclass.

    Args:
        table_name: Optional table name for better error messages

    Usage:
        with handle_store_errors(table_name="clients"):
            client.get_item(...)
    """
    try:
        yield
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))

        if error_code == "ResourceNotFoundException":
            raise CollectionNotFoundError(table_name=table_name or "unknown", original_error=e) from e

        if error_code == "ConditionalCheckFailedException":
            # Only raised for writes guarded with attribute_exists(id)
            raise DocumentNotFoundError(key={"table": table_name}, original_error=e) from e

        if error_code in (
            "ProvisionedThroughputExceededException",
            "ThrottlingException",
            "RequestLimitExceeded",
        ):
            raise ThrottledError(message=error_message, original_error=e) from e

        if error_code in ("ValidationException", "SerializationException"):
            raise StoreValidationError(message=error_message, original_error=e) from e

        if error_code in ("RequestTimeout", "RequestTimeoutException"):
            raise RequestTimeoutError(message=error_message, original_error=e) from e

        # Unknown error: wrap in generic PropeasError
        raise PropeasError(
            message=f"DynamoDB error ({error_code}): {error_message}", original_error=e
        ) from e
    except BotoCoreError as e:
        # Endpoint/connection failures never reach the service, so there is no error code
        raise StoreUnavailableError(message=str(e), original_error=e) from e
