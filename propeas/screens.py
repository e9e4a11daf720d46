"""
The dashboard's list screens and who may open them.

A ListScreen describes one paginated table: which collection it lists,
how it is ordered, what the search box searches and which statuses the
filter dropdown offers. ``open`` turns it into a controller for the
signed-in identity, or refuses before anything is queried.

Usage:
    controller = CALLBACK_REQUESTS.open(session)
    await controller.fetch_page(Direction.FIRST)
    await controller.fetch_page(Direction.FIRST, filters=CALLBACK_REQUESTS.filters_for("New"))
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ._logging import logger, redact_key
from .base import DocumentModel
from .exceptions import AuthorizationError
from .identity import Role, SessionContext
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
    UserAccount,
)
from .pagination import (
    DEFAULT_ERROR_MESSAGE,
    DEFAULT_SEARCH_ERROR_MESSAGE,
    DocumentPageSource,
    PageSource,
    PaginatedQueryController,
)

ADMINS = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
SALES_TEAM = ADMINS | {Role.SALES}
FINANCE_TEAM = ADMINS | {Role.FINANCE}
OPERATIONS_TEAM = ADMINS | {Role.SALES, Role.OPERATIONS}

# Listings the company publishes itself carry this submitter
COMPANY_LISTER = "ceo@estateeasy.com"


@dataclass(frozen=True)
class ListScreen:
    name: str
    route: str
    model: type[DocumentModel]
    order_by: str
    roles: frozenset[Role]
    descending: bool = True
    search_field: str | None = None
    search_fields: tuple[str, ...] = ()
    status_field: str | None = None
    status_options: tuple[str, ...] = ()
    # Applied to every query of the screen, e.g. only verified properties
    fixed_filters: Mapping[str, Any] = field(default_factory=dict)
    default_page_size: int = 5
    page_size_options: tuple[int, ...] = (5, 10, 15, 20)
    error_message: str = DEFAULT_ERROR_MESSAGE
    search_error_message: str = DEFAULT_SEARCH_ERROR_MESSAGE

    def allows(self, role: Role | None) -> bool:
        return role in self.roles

    def filters_for(self, status: str | None = None) -> dict[str, Any]:
        """
        Equality filters for a status dropdown value ("" or None means all).

        Raises:
            ValueError: If the screen has no status filter or ``status`` is not offered
        """
        filters = dict(self.fixed_filters)
        if status:
            if not self.status_field:
                raise ValueError(f"Screen '{self.name}' has no status filter")
            if self.status_options and status not in self.status_options:
                raise ValueError(f"Unknown status '{status}' for screen '{self.name}'")
            filters[self.status_field] = status
        return filters

    def open(
        self,
        session: SessionContext,
        source: PageSource[Any] | None = None,
        status: str | None = None,
    ) -> PaginatedQueryController[Any]:
        """
        Builds the screen's controller for the session's identity.

        Raises:
            AuthorizationError: If nobody is signed in or their role may not see the screen
        """
        identity = session.identity
        if identity is None or not self.allows(identity.role):
            logger.warning(
                "Screen access denied",
                extra={
                    "screen": self.name,
                    "user_hash": redact_key(identity.id if identity else None),
                    "role": identity.role.value if identity else None,
                },
            )
            raise AuthorizationError()

        return PaginatedQueryController(
            source or DocumentPageSource(self.model),
            self.order_by,
            page_size=self.default_page_size,
            descending=self.descending,
            search_field=self.search_field,
            search_fields=self.search_fields,
            filters=self.filters_for(status),
            session=session,
            page_size_options=self.page_size_options,
            error_message=self.error_message,
            search_error_message=self.search_error_message,
        )


CLIENTS = ListScreen(
    name="Clients",
    route="/clients/AllClients",
    model=Client,
    order_by="created_at",
    roles=SALES_TEAM,
    search_field="name",
    search_fields=("name", "email", "phone"),
    error_message="Failed to fetch clients. Please try again.",
)

USERS = ListScreen(
    name="Platform Users",
    route="/users",
    model=UserAccount,
    order_by="created_at",
    roles=ADMINS,
    search_field="name",
    search_fields=("name", "email", "phone", "role"),
    error_message="Failed to fetch users. Please try again.",
)

EMPLOYEES = ListScreen(
    name="Employees",
    route="/employees/AllEmployees",
    model=Employee,
    order_by="joined_on",
    roles=ADMINS,
    search_field="name",
    search_fields=("name", "email", "phone", "department"),
    status_field="employment_status",
    error_message="Failed to fetch employees. Please try again.",
)

PROPERTIES = ListScreen(
    name="Properties",
    route="/properties/AllProperties",
    model=Property,
    order_by="timestamp",
    descending=False,
    roles=OPERATIONS_TEAM,
    search_field="name",
    search_fields=("name", "city", "location", "property_type"),
    fixed_filters={"status": "verified"},
    error_message="Failed to fetch properties. Please try again.",
)

SELL_RENT_PROPERTIES = ListScreen(
    name="Sell/Rent Properties",
    route="/properties/SellRentProperties",
    model=Property,
    order_by="timestamp",
    roles=OPERATIONS_TEAM,
    # No prefix index covers these; search filters the whole listing
    search_fields=("address", "city", "property_type", "status", "service"),
    fixed_filters={"submitted_by": COMPANY_LISTER},
    default_page_size=10,
    error_message="Failed to fetch properties. Please try again.",
)

PAYMENTS = ListScreen(
    name="Payments",
    route="/finance/Payments",
    model=Invoice,
    order_by="timestamp",
    roles=FINANCE_TEAM,
    search_field="client_email",
    search_fields=("client_email",),
    status_field="payment_status",
    error_message="Failed to fetch invoices. Please try again.",
)

SUBSCRIPTIONS = ListScreen(
    name="Subscriptions",
    route="/finance/Subscriptions",
    model=Subscription,
    order_by="subscribed_at",
    roles=FINANCE_TEAM,
    search_field="submitted_by",
    search_fields=("submitted_by",),
    status_field="status",
    error_message="Failed to fetch payments. Please try again.",
)

CALLBACK_REQUESTS = ListScreen(
    name="Callback Requests",
    route="/crm/CallbackRequests",
    model=CallbackRequest,
    order_by="timestamp",
    roles=SALES_TEAM,
    search_field="name",
    search_fields=("name", "email", "phone"),
    status_field="status",
    status_options=("New", "Contacted", "Unreached", "Dropped", "ConvertedtoLead"),
    error_message="Failed to fetch callback requests. Please try again.",
)

LEADS = ListScreen(
    name="Leads",
    route="/crm/leads",
    model=Lead,
    order_by="created_at",
    roles=SALES_TEAM,
    search_field="name",
    search_fields=("name", "email", "phone"),
    status_field="status",
    error_message="Failed to fetch leads. Please try again.",
)

BUY_SELL_REQUESTS = ListScreen(
    name="Buy/Sell Requests",
    route="/crm/BuySellRequests",
    model=BuySellRequest,
    order_by="timestamp",
    roles=OPERATIONS_TEAM,
    search_field="name",
    search_fields=("name", "email", "phone"),
    status_field="status",
    status_options=("pending", "in-progress", "completed", "rejected"),
    error_message="Failed to fetch buy/sell requests. Please try again.",
)

ENQUIRIES = ListScreen(
    name="Service Enquiries",
    route="/crm/ServiceEnquiries",
    model=Enquiry,
    order_by="timestamp",
    roles=OPERATIONS_TEAM,
    search_field="name",
    search_fields=("name", "email", "phone"),
    status_field="status",
    error_message="Failed to fetch enquiries. Please try again.",
)

HISTORY = ListScreen(
    name="History",
    route="/history",
    model=AuditEntry,
    order_by="timestamp",
    roles=ADMINS,
    default_page_size=10,
    page_size_options=(5, 10, 20, 30),
    error_message="Failed to load audit logs. Please try again.",
)

SCREENS: tuple[ListScreen, ...] = (
    CLIENTS,
    CALLBACK_REQUESTS,
    LEADS,
    BUY_SELL_REQUESTS,
    ENQUIRIES,
    PROPERTIES,
    SELL_RENT_PROPERTIES,
    PAYMENTS,
    SUBSCRIPTIONS,
    EMPLOYEES,
    USERS,
    HISTORY,
)


def navigation_for(role: Role | None) -> list[ListScreen]:
    """Screens the sidebar shows for ``role``, in sidebar order."""
    return [screen for screen in SCREENS if screen.allows(role)]


def screen_named(name: str) -> ListScreen:
    for screen in SCREENS:
        if screen.name == name:
            return screen
    raise KeyError(name)
