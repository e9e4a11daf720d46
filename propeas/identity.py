"""
Sign-in, the current identity, and role resolution.

The identity provider only knows who someone is. What they may do comes from
their record in the ``users`` collection (``role``); a signed-in identity
without one is treated as a ``client``.

The current identity lives on an explicit ``SessionContext`` that screens and
services receive, rather than on module state. The session subscribes to the
provider once when it is entered and unsubscribes when it exits.

Usage:
    with SessionContext(CognitoIdentityProvider()) as session:
        result = session.login("ops@propeas.in", "secret")
        if not result.success:
            print(result.error_message)
        controller = screens.CLIENTS.open(session)
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ._logging import logger, redact_key
from .audit import AuditAction, AuditLogWriter
from .config import get_settings
from .exceptions import AuthenticationError, PropeasError
from .models import UserAccount


class Role(str, Enum):
    SUPER_ADMIN = "Super Admin"
    ADMIN = "Admin"
    SALES = "Sales"
    OPERATIONS = "Operations"
    FINANCE = "Finance"
    EMPLOYEE = "Employee"
    CLIENT = "client"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Maps a stored role string to a Role; unknown or missing roles are ``client``."""
        try:
            return cls(value)
        except ValueError:
            return cls.CLIENT


@dataclass(frozen=True)
class ProviderUser:
    """What the identity provider knows about a signed-in user."""

    id: str
    email: str
    name: str = ""
    phone: str = ""
    avatar_url: str = ""


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    role: Role
    name: str = ""
    phone: str = ""
    avatar_url: str = ""

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles


@dataclass(frozen=True)
class LoginResult:
    success: bool
    error_message: str | None = None


Listener = Callable[[Any], None]

DEFAULT_LOGIN_ERROR = "Login failed. Please try again."

LOGIN_ERROR_MESSAGES = {
    "user-not-found": "No user found with this email.",
    "wrong-password": "Incorrect password.",
    "invalid-credential": "Invalid email or password.",
    "invalid-email": "Invalid email address.",
    "user-disabled": "Your account has been disabled.",
    "too-many-requests": "Too many attempts. Try again later.",
    "network-request-failed": "Network error. Please check your internet connection.",
    "email-already-in-use": "Email is already in use. Please use a different email.",
    "weak-password": "Password must be at least 6 characters long",
}


def login_error_message(code: str) -> str:
    return LOGIN_ERROR_MESSAGES.get(code, DEFAULT_LOGIN_ERROR)


class IdentityProvider(Protocol):
    """
    Authentication backend.

    ``subscribe`` registers a callback invoked with the new ``ProviderUser``
    (or None) whenever the signed-in user changes, and returns a function
    that removes it.
    """

    def sign_in(self, email: str, password: str) -> ProviderUser: ...

    def sign_out(self) -> None: ...

    def current_user(self) -> ProviderUser | None: ...

    def create_account(self, email: str, password: str, name: str = "") -> ProviderUser: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...


def _auth_error(e: ClientError) -> AuthenticationError:
    """Translates a cognito-idp ClientError into an AuthenticationError with a stable code."""
    error_code = e.response.get("Error", {}).get("Code", "Unknown")
    error_message = e.response.get("Error", {}).get("Message", str(e))

    if error_code == "NotAuthorizedException":
        if "disabled" in error_message.lower():
            code = "user-disabled"
        elif "attempts exceeded" in error_message.lower():
            code = "too-many-requests"
        else:
            code = "invalid-credential"
    elif error_code == "UserNotFoundException":
        code = "user-not-found"
    elif error_code == "InvalidParameterException":
        code = "invalid-email"
    elif error_code in (
        "TooManyRequestsException",
        "LimitExceededException",
        "TooManyFailedAttemptsException",
    ):
        code = "too-many-requests"
    elif error_code == "UsernameExistsException":
        code = "email-already-in-use"
    elif error_code == "InvalidPasswordException":
        code = "weak-password"
    else:
        code = error_code

    return AuthenticationError(login_error_message(code), code=code, original_error=e)


class CognitoIdentityProvider:
    """
    IdentityProvider backed by an Amazon Cognito user pool.

    Users sign in with USER_PASSWORD_AUTH; the user's ``sub`` is the identity
    id and the key of their ``users`` record. Accounts created from the
    Users screen are created with the admin API, so the signed-in
    administrator's own session is left alone.
    """

    def __init__(
        self,
        client_id: str | None = None,
        user_pool_id: str | None = None,
        client: Any | None = None,
    ) -> None:
        settings = get_settings()
        self.client_id = client_id or settings.cognito_client_id
        if not self.client_id:
            raise ValueError("No Cognito app client configured (set PROPEAS_COGNITO_CLIENT_ID)")
        self.user_pool_id = user_pool_id or settings.cognito_user_pool_id
        self.client = client or boto3.client("cognito-idp", region_name=settings.aws_region)

        self._access_token: str | None = None
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, user: ProviderUser | None) -> None:
        for listener in list(self._listeners):
            listener(user)

    @staticmethod
    def _user_from_attributes(username: str, attributes: list[dict[str, str]]) -> ProviderUser:
        attrs = {a["Name"]: a.get("Value", "") for a in attributes}
        return ProviderUser(
            id=attrs.get("sub") or username,
            email=attrs.get("email", ""),
            name=attrs.get("name", ""),
            phone=attrs.get("phone_number", ""),
            avatar_url=attrs.get("picture", ""),
        )

    def _fetch_user(self, access_token: str) -> ProviderUser:
        response = self.client.get_user(AccessToken=access_token)
        return self._user_from_attributes(response["Username"], response.get("UserAttributes", []))

    def sign_in(self, email: str, password: str) -> ProviderUser:
        """
        Authenticates with email and password.

        Raises:
            AuthenticationError: With ``code`` set to one of the keys of
                ``LOGIN_ERROR_MESSAGES`` where the failure is recognized
        """
        try:
            response = self.client.initiate_auth(
                ClientId=self.client_id,
                AuthFlow="USER_PASSWORD_AUTH",
                AuthParameters={"USERNAME": email, "PASSWORD": password},
            )
            result = response.get("AuthenticationResult")
            if not result:
                # NEW_PASSWORD_REQUIRED and friends are completed outside the dashboard
                challenge = response.get("ChallengeName", "Unknown")
                raise AuthenticationError(DEFAULT_LOGIN_ERROR, code=f"challenge-{challenge}")
            user = self._fetch_user(result["AccessToken"])
        except ClientError as e:
            raise _auth_error(e) from e
        except BotoCoreError as e:
            raise AuthenticationError(
                login_error_message("network-request-failed"),
                code="network-request-failed",
                original_error=e,
            ) from e

        self._access_token = result["AccessToken"]
        self._notify(user)
        return user

    def sign_out(self) -> None:
        token, self._access_token = self._access_token, None
        if token:
            try:
                self.client.global_sign_out(AccessToken=token)
            except (ClientError, BotoCoreError) as e:
                # The local session is gone either way
                logger.warning("Provider sign-out failed", extra={"error": str(e)})
        self._notify(None)

    def current_user(self) -> ProviderUser | None:
        if not self._access_token:
            return None
        try:
            return self._fetch_user(self._access_token)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NotAuthorizedException":
                # Expired or revoked token
                self._access_token = None
                self._notify(None)
                return None
            raise _auth_error(e) from e
        except BotoCoreError as e:
            raise AuthenticationError(
                login_error_message("network-request-failed"),
                code="network-request-failed",
                original_error=e,
            ) from e

    def create_account(self, email: str, password: str, name: str = "") -> ProviderUser:
        """
        Creates a confirmed account with a permanent password.

        Raises:
            ValueError: If no user pool id is configured
            AuthenticationError: If Cognito rejects the account
        """
        if not self.user_pool_id:
            raise ValueError("No Cognito user pool configured (set PROPEAS_COGNITO_USER_POOL_ID)")

        attributes = [
            {"Name": "email", "Value": email},
            {"Name": "email_verified", "Value": "true"},
        ]
        if name:
            attributes.append({"Name": "name", "Value": name})

        try:
            response = self.client.admin_create_user(
                UserPoolId=self.user_pool_id,
                Username=email,
                UserAttributes=attributes,
                MessageAction="SUPPRESS",
            )
            self.client.admin_set_user_password(
                UserPoolId=self.user_pool_id,
                Username=email,
                Password=password,
                Permanent=True,
            )
        except ClientError as e:
            raise _auth_error(e) from e
        except BotoCoreError as e:
            raise AuthenticationError(
                login_error_message("network-request-failed"),
                code="network-request-failed",
                original_error=e,
            ) from e

        user = response["User"]
        return self._user_from_attributes(user["Username"], user.get("Attributes", []))


class SessionContext:
    """
    The signed-in identity shared by every screen of one dashboard process.

    Read ``identity``, ``is_loading`` and ``is_ready``; call ``subscribe`` to
    be told when the identity changes. Until the context is entered the
    session counts as loading, so nothing gated on it queries the store.
    """

    def __init__(
        self, provider: IdentityProvider, audit: AuditLogWriter | None = None
    ) -> None:
        self.provider = provider
        self.audit = audit or AuditLogWriter()
        self.identity: Identity | None = None
        self.is_loading = True

        self._listeners: list[Callable[[Identity | None], None]] = []
        self._unsubscribe: Callable[[], None] | None = None

    def __enter__(self) -> "SessionContext":
        self._unsubscribe = self.provider.subscribe(self._on_provider_change)
        try:
            self._on_provider_change(self.provider.current_user())
        except Exception:
            # __exit__ is not called when __enter__ fails
            self._unsubscribe()
            self._unsubscribe = None
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()
        self.identity = None
        self.is_loading = True

    @property
    def is_ready(self) -> bool:
        """True when an identity is present and no sign-in is being resolved."""
        return self.identity is not None and not self.is_loading

    def subscribe(self, listener: Callable[[Identity | None], None]) -> Callable[[], None]:
        """Registers ``listener`` for identity changes; returns the function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def resolve_identity(self, user: ProviderUser) -> Identity:
        """Combines the provider user with the role and profile of their ``users`` record."""
        try:
            account = UserAccount.get(user.id)
        except PropeasError as e:
            logger.warning(
                "Role lookup failed, defaulting to client",
                extra={"user_hash": redact_key(user.id), "error": e.message},
            )
            account = None

        if account is None:
            return Identity(
                id=user.id,
                email=user.email,
                role=Role.CLIENT,
                name=user.name,
                phone=user.phone,
                avatar_url=user.avatar_url,
            )
        return Identity(
            id=user.id,
            email=user.email or account.email,
            role=Role.parse(account.role),
            name=account.name or user.name,
            phone=account.phone or user.phone,
            avatar_url=user.avatar_url,
        )

    def _on_provider_change(self, user: ProviderUser | None) -> None:
        self.is_loading = True
        try:
            self.identity = self.resolve_identity(user) if user is not None else None
        finally:
            self.is_loading = False

        logger.info(
            "Session identity changed",
            extra={
                "user_hash": redact_key(self.identity.id if self.identity else None),
                "role": self.identity.role.value if self.identity else None,
            },
        )
        for listener in list(self._listeners):
            listener(self.identity)

    def login(self, email: str, password: str, method: str = "email") -> LoginResult:
        """
        Signs in and audits the login.

        Failures are returned, never raised: ``error_message`` is ready to
        show next to the login form.
        """
        try:
            self.provider.sign_in(email, password)
        except AuthenticationError as e:
            logger.warning(
                "Login failed", extra={"email_hash": redact_key(email), "code": e.code}
            )
            return LoginResult(success=False, error_message=e.message)

        identity = self.identity
        if identity is not None:
            self.audit.record(
                AuditAction.LOGIN,
                actor=identity,
                target_entity_id=identity.id,
                target_entity_type="user",
                target_entity_description=identity.email,
                action_description=f"User {identity.email} logged in",
                details={"method": method},
            )
        return LoginResult(success=True)

    def logout(self) -> None:
        self.provider.sign_out()
        # Providers that don't notify on sign-out still end the session here
        if self.identity is not None:
            self._on_provider_change(None)
