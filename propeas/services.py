"""
Edits made from the dashboard's modals.

Every mutation follows the same steps:
1. check the signed-in role against the screen the edit belongs to
2. validate the form input (``ValidationError`` before any write)
3. write only what changed, stamping ``updated_at``
4. record an audit entry describing the diff, if there was one

Store failures surface as ``MutationError`` carrying the message the modal
shows; the audit entry is best effort and never fails the edit.
"""

import re
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from typing import Any, BinaryIO

from ._logging import logger, redact_key
from .audit import AuditAction, describe_changes, diff_changes
from .conditions import Attr
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    DocumentNotFoundError,
    MutationError,
    PropeasError,
    ValidationError,
)
from .identity import Identity, IdentityProvider, Role, SessionContext
from .models import (
    BuySellRequest,
    CallbackRequest,
    Client,
    Employee,
    Lead,
    Property,
    Subscription,
    UserAccount,
    new_id,
    utc_now,
)
from .screens import (
    BUY_SELL_REQUESTS,
    CALLBACK_REQUESTS,
    CLIENTS,
    COMPANY_LISTER,
    PROPERTIES,
    SELL_RENT_PROPERTIES,
    SUBSCRIPTIONS,
    USERS,
    ListScreen,
)
from .serializer import store_timestamp
from .storage import ObjectStorage
from .updates import Set

CONVERTED_TO_LEAD = "ConvertedtoLead"

PHONE_PATTERN = re.compile(r"^\d{10}$")
MIN_PASSWORD_LENGTH = 6

CALLBACK_FIELDS = ("name", "email", "phone", "service_needed", "message", "status")
CONTACT_REQUEST_FIELDS = ("name", "email", "phone", "message", "status")
PAYMENT_FIELDS = (
    "amount",
    "status",
    "service_type",
    "number_of_properties",
    "property_ids",
    "start_date",
    "end_date",
)
USER_FIELDS = ("name", "phone", "role")

LISTING_SERVICES = ("sell", "rent")
LISTING_FIELDS = (
    "name",
    "property_type",
    "address",
    "city",
    "pincode",
    "phone",
    "location",
    "price",
    "rent_price",
    "area_size",
    "square_feet",
    "apartment_type",
    "bedrooms",
    "bathroom",
    "floor",
    "furnished_type",
    "parking_area",
    "age_of_property",
    "balcony",
    "around_this_property",
    "description",
    "photos",
)
LISTING_NUMBERS = ("price", "rent_price", "area_size", "square_feet")
LISTING_REQUIRED = ("property_type", "address", "city", "pincode", "phone", "area_size", "description")


@contextmanager
def user_facing_errors(message: str) -> Generator[None, None, None]:
    """Re-raises store failures as MutationError(message); validation and authorization pass through."""
    try:
        yield
    except (ValidationError, AuthorizationError, MutationError):
        raise
    except PropeasError as e:
        logger.error("Mutation failed", extra={"error": e.message, "user_message": message})
        raise MutationError(message, original_error=e) from e


def _actor(session: SessionContext, screen: ListScreen) -> Identity:
    identity = session.identity
    if identity is None or not screen.allows(identity.role):
        raise AuthorizationError()
    return identity


def _load(model_cls: Any, pk: str) -> Any:
    record = model_cls.get(pk)
    if record is None:
        raise DocumentNotFoundError(key={model_cls._meta.pk_name: pk})
    return record


def _form(fields: Mapping[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    allowed = tuple(allowed)
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return {name: value for name, value in fields.items() if value is not None}


def _validate_phone(phone: str) -> None:
    if not PHONE_PATTERN.match(phone or ""):
        raise ValidationError("Phone number must be exactly 10 digits.", field="phone")


def properties_for_client(client_id: str) -> list[Property]:
    """Properties submitted by a client (an empty list when there are none)."""
    return Property.ordered_by("timestamp").filter(Attr("user_id") == client_id).all()


def client_phone(client: Client, properties: list[Property] | None = None) -> str:
    """The client's phone, falling back to the one on their first property."""
    if client.phone:
        return client.phone
    for prop in properties or []:
        if prop.phone:
            return prop.phone
    return ""


def update_client(
    session: SessionContext,
    client_id: str,
    name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> Client:
    """
    Updates a client's contact details.

    A changed phone number is also written to every property the client
    submitted, since the property screens show the property's own copy.
    """
    actor = _actor(session, CLIENTS)

    with user_facing_errors("Failed to update client. Please try again."):
        before = _load(Client, client_id)
        payload = {k: v for k, v in {"name": name, "email": email, "phone": phone}.items() if v is not None}
        changes = diff_changes(before, payload)
        if not changes:
            return before

        updated = Client.update(client_id).set_many({k: payload[k] for k in changes}).execute()

        if "phone" in changes:
            for prop in properties_for_client(client_id):
                Property.update(prop.id).set(Property.phone, payload["phone"]).execute()

    session.audit.record(
        AuditAction.UPDATE_CLIENT,
        actor=actor,
        target_entity_id=client_id,
        target_entity_type="client",
        target_entity_description=updated.name or updated.email,
        action_description=describe_changes(f"Updated client {updated.name}", changes),
        details={"changes": changes},
    )
    return updated


def update_callback_request(
    session: SessionContext, request_id: str, **fields: Any
) -> tuple[CallbackRequest, Lead | None]:
    """
    Updates a callback request.

    Moving the request to ``ConvertedtoLead`` also creates a Lead from it.

    Returns:
        The updated request and the Lead created by a conversion (or None)
    """
    actor = _actor(session, CALLBACK_REQUESTS)
    payload = _form(fields, CALLBACK_FIELDS)
    if "status" in payload and payload["status"] not in CALLBACK_REQUESTS.status_options:
        raise ValidationError(f"Unknown status '{payload['status']}'", field="status")

    lead: Lead | None = None
    with user_facing_errors("Failed to update callback request. Please try again."):
        before = _load(CallbackRequest, request_id)
        changes = diff_changes(before, payload)
        if not changes:
            return before, None

        now = utc_now()
        updated = (
            CallbackRequest.update(request_id)
            .set_many({k: payload[k] for k in changes})
            .set(CallbackRequest.updated_at, now)
            .execute()
        )

        if changes.get("status", {}).get("to") == CONVERTED_TO_LEAD:
            lead = Lead(
                name=updated.name,
                email=updated.email,
                phone=updated.phone,
                service_needed=updated.service_needed,
                message=updated.message,
                original_request_id=request_id,
                created_at=now,
                status="New",
            )
            lead.save()

    session.audit.record(
        AuditAction.UPDATE_CALLBACK_REQUEST,
        actor=actor,
        target_entity_id=request_id,
        target_entity_type="callbackRequest",
        target_entity_description=updated.name,
        action_description=describe_changes(f"Updated callback request {updated.name}", changes),
        details={"changes": changes},
    )
    if lead is not None:
        session.audit.record(
            AuditAction.CONVERT_CALLBACK_TO_LEAD,
            actor=actor,
            target_entity_id=lead.id,
            target_entity_type="lead",
            target_entity_description=lead.name,
            action_description=f"Converted callback request from {lead.name} to a lead",
            details={"originalRequestId": request_id},
        )
    return updated, lead


def update_buy_sell_request(session: SessionContext, request_id: str, **fields: Any) -> BuySellRequest:
    actor = _actor(session, BUY_SELL_REQUESTS)
    payload = _form(fields, CONTACT_REQUEST_FIELDS)
    if "status" in payload and payload["status"] not in BUY_SELL_REQUESTS.status_options:
        raise ValidationError(f"Unknown status '{payload['status']}'", field="status")

    with user_facing_errors("Failed to update request. Please try again."):
        before = _load(BuySellRequest, request_id)
        changes = diff_changes(before, payload)
        if not changes:
            return before

        updated = (
            BuySellRequest.update(request_id)
            .set_many({k: payload[k] for k in changes})
            .set(BuySellRequest.updated_at, utc_now())
            .set(BuySellRequest.updated_by, actor.id)
            .execute()
        )

    session.audit.record(
        AuditAction.UPDATE_CONTACT_REQUEST,
        actor=actor,
        target_entity_id=request_id,
        target_entity_type="contactRequest",
        target_entity_description=updated.name or updated.email,
        action_description=describe_changes(f"Updated buy/sell request from {updated.name}", changes),
        details={"changes": changes},
    )
    return updated


def update_payment(session: SessionContext, subscription_id: str, **fields: Any) -> Subscription:
    """Updates a premium subscription payment (verification status, dates, amount)."""
    actor = _actor(session, SUBSCRIPTIONS)
    payload = _form(fields, PAYMENT_FIELDS)

    with user_facing_errors("Failed to update payment. Please try again."):
        before = _load(Subscription, subscription_id)
        changes = diff_changes(before, payload)
        if not changes:
            return before

        updated = (
            Subscription.update(subscription_id)
            .set_many({k: payload[k] for k in changes})
            .set(Subscription.updated_at, utc_now())
            .execute()
        )

    description = updated.submitted_by or subscription_id
    session.audit.record(
        AuditAction.UPDATE_PAYMENT,
        actor=actor,
        target_entity_id=subscription_id,
        target_entity_type="payment",
        target_entity_description=description,
        action_description=describe_changes(f"Updated payment {description}", changes),
        details={"changes": changes},
    )
    return updated


def update_property(session: SessionContext, property_id: str, **fields: Any) -> Property:
    """
    Writes the property fields that differ from the stored record.

    Nothing is written or audited when every field is unchanged.
    """
    actor = _actor(session, PROPERTIES)
    editable = set(Property.model_fields) - {"id", "listing", "name_search", "updated_at"}
    unknown = set(fields) - editable
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    with user_facing_errors("Failed to update property. Please try again."):
        before = _load(Property, property_id)
        changes = diff_changes(before, fields, ignore=("updated_at",))
        if not changes:
            return before

        updated = (
            Property.update(property_id)
            .set_many({k: fields[k] for k in changes})
            .set(Property.updated_at, utc_now())
            .execute()
        )

    session.audit.record(
        AuditAction.UPDATE_PROPERTY,
        actor=actor,
        target_entity_id=property_id,
        target_entity_type="property",
        target_entity_description=updated.name,
        action_description=describe_changes(f"Updated property {updated.name}", changes),
        details={"changes": changes},
    )
    return updated


def create_property(
    session: SessionContext,
    name: str,
    property_type: str = "",
    street: str = "",
    landmark: str = "",
    phone: str = "",
    email: str = "",
    message: str = "",
    assigned_employee: str = "",
    photos: Iterable[tuple[str, bytes | BinaryIO, str]] = (),
    storage: ObjectStorage | None = None,
) -> Property:
    """
    Creates a property from the Add Property modal, uploading its photos first.

    Raises:
        ValidationError: If the name is blank
        StorageError: If a photo upload fails (nothing is written)
    """
    actor = _actor(session, PROPERTIES)
    if not name or not name.strip():
        raise ValidationError("Property name is required.", field="name")

    property_id = new_id()
    photos = list(photos)
    image_urls: list[str] = []
    if photos:
        storage = storage or ObjectStorage()
        image_urls = storage.upload_many(f"properties/{property_id}", photos)

    prop = Property(
        id=property_id,
        name=name.strip(),
        property_type=property_type,
        street=street,
        landmark=landmark,
        phone=phone,
        email=email,
        message=message,
        assigned_employee=assigned_employee,
        image_urls=image_urls,
        status="active",
        timestamp=utc_now(),
    )
    with user_facing_errors("Failed to add property. Please try again."):
        prop.save(condition=Attr("id").not_exists())

    session.audit.record(
        AuditAction.CREATE_PROPERTY,
        actor=actor,
        target_entity_id=prop.id,
        target_entity_type="property",
        target_entity_description=prop.name,
        action_description=f"Created property {prop.name}",
        details={"imageCount": len(image_urls), "assignedEmployee": assigned_employee},
    )
    return prop


def _typed(model_cls: Any, payload: Mapping[str, Any]) -> dict[str, Any]:
    # Form values arrive as text; coerce them to the field types up front
    return {name: Set(name, value).validate(model_cls) for name, value in payload.items()}


def save_listing(
    session: SessionContext,
    listing_id: str | None = None,
    *,
    service: str = "sell",
    photos: Iterable[tuple[str, bytes | BinaryIO, str]] = (),
    storage: ObjectStorage | None = None,
    **fields: Any,
) -> Property:
    """
    Creates or edits a company listing from the Sell/Rent Properties modal.

    Listings saved here are published straight away: they are stamped
    ``verified``, submitted by the company account and owned by ``admin``.
    A sale carries ``buy_sell_type="sell"`` and a rental ``rent_type="Rent"``;
    the other one is cleared. New photos are uploaded first and appended to
    the listing's ``photos``; pass ``photos`` in ``fields`` to replace the
    existing URLs (e.g. after removing one).

    Editing merges: only fields that differ are written, and the listing's
    ``timestamp`` is renewed so it moves to the top of the screen.

    Raises:
        ValidationError: For an unknown service, unknown or mistyped fields,
            or a required field left blank
        StorageError: If a photo upload fails (nothing is written)
    """
    actor = _actor(session, SELL_RENT_PROPERTIES)
    if service not in LISTING_SERVICES:
        raise ValidationError("Service must be 'sell' or 'rent'.", field="service")

    form = {
        name: value
        for name, value in _form(fields, LISTING_FIELDS).items()
        if not (name in LISTING_NUMBERS and isinstance(value, str) and not value.strip())
    }
    payload = _typed(Property, form)
    payload.update(
        service=service,
        status="verified",
        submitted_by=COMPANY_LISTER,
        user_id="admin",
        buy_sell_type="sell" if service == "sell" else None,
        rent_type="Rent" if service == "rent" else None,
    )

    before = None
    if listing_id is not None:
        with user_facing_errors("Failed to save property. Please try again."):
            before = _load(Property, listing_id)

    merged = {**(before.model_dump() if before else {}), **payload}
    price_field = "price" if service == "sell" else "rent_price"
    for name in (*LISTING_REQUIRED, price_field):
        value = merged.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{name.replace('_', ' ').capitalize()} is required.", field=name)

    listing_id = listing_id or new_id()
    photos = list(photos)
    if photos:
        storage = storage or ObjectStorage()
        uploaded = storage.upload_many(f"properties/{listing_id}", photos)
        kept = payload.get("photos", before.photos if before else [])
        payload["photos"] = [*kept, *uploaded]

    if before is None:
        listing = Property(id=listing_id, timestamp=utc_now(), **payload)
        with user_facing_errors("Failed to save property. Please try again."):
            listing.save(condition=Attr("id").not_exists())

        session.audit.record(
            AuditAction.CREATE_PROPERTY,
            actor=actor,
            target_entity_id=listing.id,
            target_entity_type="property",
            target_entity_description=listing.address,
            action_description=f"Listed property for {service} at {listing.address}",
            details={"service": service, "photoCount": len(listing.photos)},
        )
        return listing

    changes = diff_changes(before, payload)
    if not changes:
        return before

    now = utc_now()
    with user_facing_errors("Failed to save property. Please try again."):
        updated = (
            Property.update(listing_id)
            .set_many({k: payload[k] for k in changes})
            .set(Property.timestamp, now)
            .set(Property.updated_at, now)
            .execute()
        )

    session.audit.record(
        AuditAction.UPDATE_PROPERTY,
        actor=actor,
        target_entity_id=listing_id,
        target_entity_type="property",
        target_entity_description=updated.address,
        action_description=describe_changes(f"Updated listing at {updated.address}", changes),
        details={"changes": changes},
    )
    return updated


def _phone_in_use(phone: str, exclude_id: str | None = None) -> bool:
    for account in UserAccount.ordered_by("created_at").filter(Attr("phone") == phone):
        if account.id != exclude_id:
            return True
    return False


def create_user(
    session: SessionContext,
    provider: IdentityProvider,
    name: str,
    email: str,
    password: str,
    phone: str,
    role: Role = Role.EMPLOYEE,
) -> UserAccount:
    """
    Creates a sign-in account and its ``users`` record.

    Employees also get an ``employees`` record so they show up on the
    Employees screen.

    Raises:
        ValidationError: On missing credentials, a short password, a
            malformed or already used phone number, or an email the
            identity provider rejects
    """
    actor = _actor(session, USERS)

    if not email or not password:
        raise ValidationError("Email and password are required for new users")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 6 characters long", field="password")
    _validate_phone(phone)

    with user_facing_errors("Failed to create user. Please try again."):
        if _phone_in_use(phone):
            raise ValidationError(
                "Phone number is already in use. Please use a different phone number.",
                field="phone",
            )

        try:
            account = provider.create_account(email, password, name)
        except AuthenticationError as e:
            if e.code == "invalid-email":
                raise ValidationError(
                    "Invalid email format. Please enter a valid email.", field="email"
                ) from e
            raise ValidationError(e.message, field="email") from e

        now = utc_now()
        user = UserAccount(
            id=account.id, name=name, email=email, phone=phone, role=role.value, created_at=now
        )
        user.save()

        if role is Role.EMPLOYEE:
            Employee(
                id=account.id,
                name=name,
                email=email,
                role=Role.EMPLOYEE.value,
                phone=phone,
                employment_status="Active",
                joined_on=store_timestamp(now),
            ).save()

    logger.info(
        "User created", extra={"user_hash": redact_key(user.id), "role": role.value}
    )
    session.audit.record(
        AuditAction.CREATE_USER,
        actor=actor,
        target_entity_id=user.id,
        target_entity_type="user",
        target_entity_description=user.email,
        action_description=f"Created user {user.name or user.email} with role {role.value}",
        details={"role": role.value},
    )
    return user


def update_user(session: SessionContext, user_id: str, **fields: Any) -> UserAccount:
    """
    Updates a user's name, phone or role.

    Email and password belong to the identity provider and are not edited here.
    """
    actor = _actor(session, USERS)
    payload = _form(fields, USER_FIELDS)
    if "role" in payload:
        try:
            payload["role"] = Role(payload["role"]).value
        except ValueError as e:
            raise ValidationError(f"Unknown role '{payload['role']}'", field="role") from e
    if "phone" in payload:
        _validate_phone(payload["phone"])

    with user_facing_errors("Failed to update user. Please try again."):
        before = _load(UserAccount, user_id)
        changes = diff_changes(before, payload, ignore=("email", "password", "updated_at"))
        if not changes:
            return before

        if "phone" in changes and _phone_in_use(payload["phone"], exclude_id=user_id):
            raise ValidationError(
                "Phone number is already in use. Please use a different phone number.",
                field="phone",
            )

        updated = (
            UserAccount.update(user_id)
            .set_many({k: payload[k] for k in changes})
            .set(UserAccount.updated_at, utc_now())
            .execute()
        )

    session.audit.record(
        AuditAction.UPDATE_USER,
        actor=actor,
        target_entity_id=user_id,
        target_entity_type="user",
        target_entity_description=updated.email,
        action_description=describe_changes(f"Updated user {updated.name or updated.email}", changes),
        details={"changes": changes},
    )
    return updated


def delete_user(session: SessionContext, user_id: str) -> None:
    """Deletes a ``users`` record, and the ``employees`` record of an Employee."""
    actor = _actor(session, USERS)

    with user_facing_errors("Failed to delete user. Please try again."):
        user = _load(UserAccount, user_id)
        UserAccount.delete(user_id)
        if Role.parse(user.role) is Role.EMPLOYEE:
            Employee.delete(user_id)

    session.audit.record(
        AuditAction.DELETE_USER,
        actor=actor,
        target_entity_id=user_id,
        target_entity_type="user",
        target_entity_description=user.email,
        action_description=f"Deleted user {user.name or user.email}",
        details={"id": user_id},
    )
