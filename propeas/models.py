"""
Typed records for every collection the dashboard reads or writes.

Documents in the store were written by several generations of the mobile
app and the dashboard, so the same attribute can arrive as ``phoneNumber``
or ``phone``, as a nested ``actor`` object or as flat ``actorUser*``
fields, or be missing entirely. Each model has exactly one ``mode="before"``
normalizer that turns such a raw document into the model's shape; nothing
downstream has to fill defaults again.

Every model carries:
- ``id``: the document key
- ``listing``: the constant partition of its listing indexes
- one ``IndexSortKey`` per ordering a screen uses
- lower-cased ``*_search`` shadows (``SearchKey``) for prefix search
"""

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import DocumentModel
from .fields import IndexSortKey, Key, ListingKey, SearchKey
from .serializer import store_timestamp

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def new_id() -> str:
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _timestamp(value: Any) -> Any:
    # Exported store timestamps look like {"seconds": ..., "nanoseconds": ...}
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is not None:
            nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
    return value


def document_fields(
    data: Any,
    model: type[BaseModel],
    aliases: Mapping[str, str] | None = None,
) -> Any:
    """
    Shared first step of every normalizer.

    - camelCase keys become snake_case (an existing snake_case key wins)
    - legacy names in ``aliases`` (``{"phone_number": "phone"}``) fill the
      current name when it is missing or blank
    - ``None`` is dropped for fields whose default is not ``None``, so
      ``"name": null`` reads as ``""`` rather than failing validation
    - timestamp maps on datetime fields become datetimes
    """
    if not isinstance(data, Mapping):
        return data

    out: dict[str, Any] = {key: value for key, value in data.items() if _snake(key) == key}
    for key, value in data.items():
        out.setdefault(_snake(key), value)

    for legacy, current in (aliases or {}).items():
        if legacy in out and out.get(current) in (None, ""):
            out[current] = out[legacy]

    for name, field_info in model.model_fields.items():
        if name not in out:
            continue
        if out[name] is None and not field_info.is_required() and field_info.get_default(
            call_default_factory=True
        ) is not None:
            del out[name]
            continue
        if field_info.annotation is not None and "datetime" in str(field_info.annotation):
            out[name] = _timestamp(out[name])
    return out


class Client(DocumentModel):
    """A customer who owns or subscribes properties (mobile-app user)."""

    class Meta:
        collection = "clients"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="clients")
    name: str = ""
    email: str = ""
    phone: str = ""
    role: str = "client"
    properties: list[str] = Field(default_factory=list)
    subscribed_services: list[str] = Field(default_factory=list)
    profile_photo_url: str = ""
    subscription_status: str = ""
    created_at: datetime | None = IndexSortKey("created_at-index")

    name_search: str | None = SearchKey("name", "name_search-index")
    email_search: str | None = SearchKey("email", "email_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls, aliases={"phone_number": "phone"})


class UserAccount(DocumentModel):
    """A dashboard user; ``role`` drives what they may see."""

    class Meta:
        collection = "users"

    id: str = Key()
    listing: str = ListingKey(default="users")
    name: str = ""
    email: str = ""
    phone: str = ""
    role: str = "client"
    created_at: datetime | None = IndexSortKey("created_at-index")
    updated_at: datetime | None = None
    last_login: datetime | None = None

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls, aliases={"phone_number": "phone"})


class Employee(DocumentModel):
    class Meta:
        collection = "employees"

    id: str = Key()
    listing: str = ListingKey(default="employees")
    name: str = ""
    email: str = ""
    role: str = "Employee"
    phone: str = ""
    department: str = ""
    employment_status: str = "Active"
    joined_on: str | None = IndexSortKey("joined_on-index")
    avatar_url: str = ""
    assigned_to: str = ""

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        data = document_fields(data, cls, aliases={"assignedto": "assigned_to"})
        if isinstance(data, dict):
            joined_on = _timestamp(data.get("joined_on"))
            if isinstance(joined_on, datetime):
                data["joined_on"] = store_timestamp(joined_on)
        return data


class Tenant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    email: str = ""
    phone: str = ""
    move_in_date: datetime | None = None
    timestamp: datetime | None = None
    user_id: str = ""

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class Property(DocumentModel):
    """A managed, rented or for-sale property submitted by a client."""

    class Meta:
        collection = "properties"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="properties")

    name: str = ""
    phone: str = ""
    email: str = ""
    message: str = ""
    user_id: str = ""
    submitted_by: str = ""
    status: str = "pending"
    timestamp: datetime | None = IndexSortKey("timestamp-index")
    updated_at: datetime | None = None

    property_type: str = ""
    service: str = ""

    address: str = ""
    city: str = ""
    location: str = ""
    floor: str = ""
    landmark: str = ""
    street: str = ""
    pincode: str = ""
    location_link: str = ""
    area_size: float = 0
    square_feet: float = 0
    detailed_address: dict[str, Any] = Field(default_factory=dict)

    price: float = 0
    rent_price: float | None = None
    rent_type: str | None = None
    buy_sell_type: str | None = None
    s_no: str = ""

    description: str = ""
    apartment_type: str = ""
    bedrooms: str = ""
    bathroom: str = ""
    balcony: str = ""
    furnished_type: str = ""
    parking_area: str = ""
    age_of_property: str = ""
    around_this_property: str = ""

    photos: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    assigned_employee: str = ""
    subscription_id: str = ""
    tenants: list[Tenant] = Field(default_factory=list)

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        data = document_fields(data, cls, aliases={"phone_no": "phone"})
        if isinstance(data, dict):
            # Listing forms saved numbers as text, often left empty
            for name in ("area_size", "square_feet", "price", "rent_price"):
                value = data.get(name)
                if isinstance(value, str):
                    value = value.replace(",", "").strip()
                    if value:
                        data[name] = value
                    else:
                        del data[name]
        return data


class Invoice(DocumentModel):
    """A payment record shown on the Payments screen."""

    class Meta:
        collection = "invoices"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="invoices")
    client_email: str = ""
    amount: float = 0
    payment_status: str = ""
    description: str = ""
    timestamp: datetime | None = IndexSortKey("timestamp-index")
    updated_at: datetime | None = None

    client_email_search: str | None = SearchKey("client_email", "client_email_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class Subscription(DocumentModel):
    """A premium subscription payment awaiting or past verification."""

    class Meta:
        collection = "premium_subscriptions"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="premium_subscriptions")
    amount: float = 0
    number_of_properties: int = 0
    property_ids: list[str] = Field(default_factory=list)
    service_type: str = ""
    status: str = "awaiting_verification"
    submitted_by: str = ""
    transaction_screenshot: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    subscribed_at: datetime | None = IndexSortKey("subscribed_at-index")
    updated_at: datetime | None = None

    submitted_by_search: str | None = SearchKey("submitted_by", "submitted_by_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class CallbackRequest(DocumentModel):
    class Meta:
        collection = "callbackRequests"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="callbackRequests")
    name: str = ""
    email: str = ""
    phone: str = ""
    service_needed: str = ""
    message: str = ""
    status: str = "New"
    timestamp: datetime | None = IndexSortKey("timestamp-index")
    updated_at: datetime | None = None
    updated_by: str = ""

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class Lead(DocumentModel):
    """A sales lead, usually converted from a callback request."""

    class Meta:
        collection = "leads"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="leads")
    name: str = ""
    email: str = ""
    phone: str = ""
    service_needed: str = ""
    message: str = ""
    original_request_id: str = ""
    status: str = "New"
    created_at: datetime | None = IndexSortKey("created_at-index")

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class BuySellRequest(DocumentModel):
    """A buy/sell contact request raised against a listed property."""

    class Meta:
        collection = "contact_requests"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="contact_requests")
    name: str = ""
    email: str = ""
    phone: str = ""
    message: str = ""
    property_id: str = ""
    property_type: str = ""
    status: str = "pending"
    submitted_by: str = ""
    timestamp: datetime | None = IndexSortKey("timestamp-index")
    updated_at: datetime | None = None
    updated_by: str = ""

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class Enquiry(DocumentModel):
    class Meta:
        collection = "enquiries"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="enquiries")
    name: str = ""
    email: str = ""
    phone: str = ""
    message: str = ""
    property_id: str = ""
    property_type: str = ""
    status: str = "pending"
    submitted_by: str = ""
    timestamp: datetime | None = IndexSortKey("timestamp-index")

    name_search: str | None = SearchKey("name", "name_search-index")

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        return document_fields(data, cls)


class AuditEntry(DocumentModel):
    """
    One append-only audit record.

    Older entries nest the actor as ``{"name", "email", "role"}``; the
    normalizer flattens it into the ``actor_user_*`` fields.
    """

    class Meta:
        collection = "platformAuditLogs"

    id: str = Key(default_factory=new_id)
    listing: str = ListingKey(default="platformAuditLogs")
    timestamp: datetime | None = IndexSortKey("timestamp-index")
    action_type: str = ""
    actor_user_id: str = ""
    actor_user_name: str = ""
    actor_user_email: str = ""
    actor_user_role: str = ""
    target_entity_id: str = ""
    target_entity_type: str = ""
    target_entity_description: str = ""
    action_description: str = ""
    source: str = ""
    details: Any = None

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        data = document_fields(data, cls)
        if not isinstance(data, dict):
            return data
        actor = data.pop("actor", None)
        if isinstance(actor, Mapping):
            for key in ("id", "name", "email", "role"):
                if actor.get(key) and not data.get(f"actor_user_{key}"):
                    data[f"actor_user_{key}"] = actor[key]
        return data
