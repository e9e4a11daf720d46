from ._logging import configure_logging
from .audit import AuditAction, AuditLogWriter, describe_changes, diff_changes
from .base import DocumentModel
from .conditions import Attr, Condition, StoreCondition
from .config import Settings, get_settings
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    CollectionNotFoundError,
    DocumentNotFoundError,
    MutationError,
    PropeasError,
    RequestTimeoutError,
    SerializationError,
    StorageError,
    StoreUnavailableError,
    StoreValidationError,
    ThrottledError,
    ValidationError,
)
from .fields import IndexSortKey, Key, ListingKey, SearchKey
from .identity import (
    CognitoIdentityProvider,
    Identity,
    IdentityProvider,
    LoginResult,
    Role,
    SessionContext,
)
from .models import (
    AuditEntry,
    BuySellRequest,
    CallbackRequest,
    Client,
    Employee,
    Enquiry,
    Invoice,
    Lead,
    Property,
    Subscription,
    Tenant,
    UserAccount,
)
from .pagination import (
    CursorStack,
    Direction,
    DocumentPageSource,
    PageRequest,
    PageResult,
    PageSource,
    PaginatedQueryController,
    ViewState,
)
from .search import SearchDebouncer, matches_any, normalize_term, prefix_range
from .storage import ObjectStorage
from .updates import Remove, Set, UpdateBuilder

__all__ = [
    "DocumentModel",
    "Key",
    "ListingKey",
    "IndexSortKey",
    "SearchKey",
    # Pagination
    "PaginatedQueryController",
    "DocumentPageSource",
    "PageSource",
    "PageRequest",
    "PageResult",
    "CursorStack",
    "Direction",
    "ViewState",
    # Search
    "SearchDebouncer",
    "normalize_term",
    "prefix_range",
    "matches_any",
    # Updates
    "UpdateBuilder",
    "Set",
    "Remove",
    # Conditions DSL
    "Attr",
    "StoreCondition",
    "Condition",
    # Identity and audit
    "Role",
    "Identity",
    "IdentityProvider",
    "CognitoIdentityProvider",
    "SessionContext",
    "LoginResult",
    "AuditAction",
    "AuditLogWriter",
    "diff_changes",
    "describe_changes",
    "ObjectStorage",
    # Records
    "Client",
    "UserAccount",
    "Employee",
    "Property",
    "Tenant",
    "Invoice",
    "Subscription",
    "CallbackRequest",
    "Lead",
    "BuySellRequest",
    "Enquiry",
    "AuditEntry",
    # Configuration
    "Settings",
    "get_settings",
    "configure_logging",
    # Exceptions
    "PropeasError",
    "CollectionNotFoundError",
    "DocumentNotFoundError",
    "ThrottledError",
    "RequestTimeoutError",
    "StoreUnavailableError",
    "StoreValidationError",
    "SerializationError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "MutationError",
    "StorageError",
]
