from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
    Union,
)

from coursesphere.config import Settings
from coursesphere.logging import email_fingerprint, get_logger, sanitize_error_message
from coursesphere.service.errors import (
    AuthenticationError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    MissingTokensError,
    ServiceError,
    UpstreamError,
    ValidationError,
)
from coursesphere.service.identity import (
    IdentityProvider,
    ProviderRejected,
    code_challenge_for,
)
from coursesphere.service.session_store import SessionStore
from coursesphere.service.tokens import decode_subject
from coursesphere.storage.common import ConstraintViolation
from coursesphere.storage.models import (
    SELF_SERVICE_ROLES,
    Profile,
    Role,
    Session,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Shared by the "no session" and "no profile" failures
UNAUTHENTICATED = "unauthenticated"


class AuthStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    async def create_profile(self, profile: Profile) -> Profile: ...


@dataclass
class FlowResult(Generic[T]):
    """Outcome of a credential flow: a value or exactly one service error."""

    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T) -> "FlowResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ServiceError) -> "FlowResult[T]":
        return cls(error=error)


def _parse_expiry(raw: Any) -> Optional[int]:
    """Integer unix seconds from an int, float or numeric string."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        try:
            return int(raw)
        except (ValueError, OverflowError):
            return None
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            return None
    return None


def _role_names(allowed: Iterable[Union[Role, str]]) -> frozenset:
    return frozenset(role.value if isinstance(role, Role) else str(role) for role in allowed)


class AuthService:
    """Sessions, profile resolution and access checks on top of an identity provider.

    The service is stateless: every call takes the request's
    :class:`SessionStore`, and the session it reads is the only identity it
    trusts. Flows return :class:`FlowResult`; the checks used as request
    guards (``get_profile``, ``require_role``, ``assert_ownership``) raise.
    """

    def __init__(
        self,
        store: AuthStore,
        identity: IdentityProvider,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store: AuthStore = store
        self.identity = identity
        self.settings = settings
        self.clock = clock
        self.logger = logger

    # Session verifier

    def verify(self, triple: Mapping[str, Any], session_store: SessionStore) -> Dict[str, Any]:
        """Validate a token triple and commit it as the current session.

        Nothing is written unless every field is present, the expiry parses
        as an integer and the access token carries a subject.
        """
        access_token = triple.get("access_token")
        refresh_token = triple.get("refresh_token")
        expires_at = _parse_expiry(triple.get("expires_at"))
        if (
            not isinstance(access_token, str)
            or not access_token
            or not isinstance(refresh_token, str)
            or not refresh_token
            or expires_at is None
        ):
            raise MissingTokensError("Missing tokens")
        user_id = decode_subject(access_token)
        session_store.commit(
            Session(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                user_id=user_id,
            )
        )
        self.logger.info("session_committed", user_id=user_id, expires_at=expires_at)
        return {"user_id": user_id, "committed": True}

    # Profile resolver

    async def _current_session(self, session_store: SessionStore) -> Session:
        session = session_store.read()
        if session is None:
            raise AuthenticationError(UNAUTHENTICATED)
        if not session.is_expired(self.clock()):
            return session
        try:
            triple = await self.identity.refresh_session(session.refresh_token)
            self.verify(triple.as_dict(), session_store)
        except (ProviderRejected, ValidationError) as exc:
            session_store.clear()
            self.logger.info(
                "session_refresh_failed",
                user_id=session.user_id,
                reason=getattr(exc, "message", str(exc)),
            )
            raise AuthenticationError(UNAUTHENTICATED) from exc
        refreshed = session_store.read()
        if refreshed is None:
            raise AuthenticationError(UNAUTHENTICATED)
        self.logger.info("session_refreshed", user_id=refreshed.user_id)
        return refreshed

    async def get_profile(self, session_store: SessionStore) -> Profile:
        session = await self._current_session(session_store)
        profile = await self.store.get_profile(session.user_id)
        if profile is None:
            self.logger.warning("profile_missing_for_session", user_id=session.user_id)
            raise AuthenticationError(UNAUTHENTICATED)
        return profile

    # Role gate and ownership

    async def require_role(
        self, allowed: Iterable[Union[Role, str]], session_store: SessionStore
    ) -> Profile:
        names = _role_names(allowed)
        profile = await self.get_profile(session_store)
        if profile.role not in names:
            self.logger.warning(
                "role_gate_denied",
                user_id=profile.id,
                role=profile.role,
                allowed=sorted(names),
            )
            raise ForbiddenError("insufficient role")
        return profile

    def assert_ownership(self, profile: Profile, resource: Any) -> None:
        if profile.role == Role.SUPER_ADMIN.value:
            return
        owner = getattr(resource, "instructor_id", None)
        if profile.role == Role.ADMIN.value and owner is not None and owner == profile.id:
            return
        self.logger.warning(
            "ownership_denied",
            user_id=profile.id,
            role=profile.role,
            resource_id=getattr(resource, "id", None),
        )
        raise ForbiddenError("not the owner of this resource")

    # Credential exchange flows

    async def _as_result(self, flow: str, action: Awaitable[T]) -> FlowResult[T]:
        try:
            return FlowResult.success(await action)
        except ServiceError as exc:
            log_fn = self.logger.error if exc.status_code >= 500 else self.logger.info
            log_fn(
                "auth_flow_failed",
                flow=flow,
                error_code=exc.error_code,
                status_code=exc.status_code,
            )
            return FlowResult.failure(exc)

    async def login(
        self, email: Optional[str], password: Optional[str], session_store: SessionStore
    ) -> FlowResult[Dict[str, Any]]:
        return await self._as_result("login", self._login(email, password, session_store))

    async def _login(
        self, email: Optional[str], password: Optional[str], session_store: SessionStore
    ) -> Dict[str, Any]:
        if not email or not password:
            raise ValidationError("Email and password are required")
        try:
            triple = await self.identity.sign_in(email.strip(), password)
        except ProviderRejected as exc:
            self.logger.info("login_rejected", email_fingerprint=email_fingerprint(email))
            raise InvalidCredentialsError(exc.message or "Invalid login credentials") from exc
        committed = self.verify(triple.as_dict(), session_store)
        self.logger.info("login_success", user_id=committed["user_id"])
        return {
            **triple.as_dict(),
            "user_id": committed["user_id"],
            "user": triple.user,
        }

    async def logout(self, session_store: SessionStore) -> FlowResult[Dict[str, Any]]:
        return await self._as_result("logout", self._logout(session_store))

    async def _logout(self, session_store: SessionStore) -> Dict[str, Any]:
        session = session_store.read()
        try:
            if session is not None:
                try:
                    await self.identity.sign_out(session.access_token)
                except (ProviderRejected, UpstreamError) as exc:
                    # Local sign-out still proceeds
                    self.logger.warning(
                        "provider_sign_out_failed",
                        user_id=session.user_id,
                        error_type=type(exc).__name__,
                    )
        finally:
            session_store.clear()
        self.logger.info("logout", user_id=session.user_id if session else None)
        return {"signed_out": True}

    async def forgot_password(
        self, email: Optional[str], session_store: SessionStore
    ) -> FlowResult[Dict[str, Any]]:
        return await self._as_result("forgot_password", self._forgot_password(email, session_store))

    async def _forgot_password(
        self, email: Optional[str], session_store: SessionStore
    ) -> Dict[str, Any]:
        if not email or not email.strip():
            raise ValidationError("Email is required")
        verifier = secrets.token_urlsafe(48)
        session_store.put_code_verifier(verifier)
        redirect_to = f"{self.settings.app_base_url.rstrip('/')}/reset-password"
        try:
            await self.identity.reset_password_for_email(
                email.strip(), redirect_to, code_challenge_for(verifier)
            )
        except (ProviderRejected, UpstreamError) as exc:
            # Outcome is never revealed to the caller
            self.logger.warning(
                "password_reset_request_failed",
                email_fingerprint=email_fingerprint(email),
                error_type=type(exc).__name__,
            )
        else:
            self.logger.info(
                "password_reset_requested", email_fingerprint=email_fingerprint(email)
            )
        return {"requested": True}

    async def exchange_reset_code(
        self, code: Optional[str], session_store: SessionStore
    ) -> FlowResult[Dict[str, Any]]:
        return await self._as_result(
            "exchange_reset_code", self._exchange_reset_code(code, session_store)
        )

    async def _exchange_reset_code(
        self, code: Optional[str], session_store: SessionStore
    ) -> Dict[str, Any]:
        if not code:
            raise ValidationError("Reset code is required")
        verifier = session_store.pop_code_verifier()
        if not verifier:
            raise InvalidOrExpiredCodeError("Reset link is invalid or has expired")
        try:
            triple = await self.identity.exchange_code_for_session(code, verifier)
        except ProviderRejected as exc:
            raise InvalidOrExpiredCodeError("Reset link is invalid or has expired") from exc
        committed = self.verify(triple.as_dict(), session_store)
        self.logger.info("reset_code_exchanged", user_id=committed["user_id"])
        return {"user_id": committed["user_id"]}

    async def reset_password(
        self, password: Optional[str], session_store: SessionStore
    ) -> FlowResult[Dict[str, Any]]:
        return await self._as_result("reset_password", self._reset_password(password, session_store))

    async def _reset_password(
        self, password: Optional[str], session_store: SessionStore
    ) -> Dict[str, Any]:
        if not password or not isinstance(password, str):
            raise ValidationError("Password is required")
        if len(password) < self.settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.settings.min_password_length} characters"
            )
        session = await self._current_session(session_store)
        try:
            await self.identity.update_user(session.access_token, password)
        except ProviderRejected as exc:
            raise ValidationError(sanitize_error_message(exc.message)) from exc
        self.logger.info("password_updated", user_id=session.user_id)
        return {"message": "Password updated successfully"}

    async def register(
        self,
        *,
        email: Optional[str],
        password: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        role: Optional[str],
    ) -> FlowResult[Dict[str, Any]]:
        return await self._as_result(
            "register",
            self._register(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
                role=role,
            ),
        )

    async def _register(
        self,
        *,
        email: Optional[str],
        password: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        role: Optional[str],
    ) -> Dict[str, Any]:
        if not all([email, password, first_name, last_name, role]):
            raise ValidationError("Missing required fields")
        if len(password) < self.settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.settings.min_password_length} characters"
            )
        if role not in SELF_SERVICE_ROLES:
            raise ValidationError(
                "role not allowed for self-registration",
                detail={"allowed": sorted(SELF_SERVICE_ROLES)},
            )
        email = email.strip()
        metadata = {"first_name": first_name, "last_name": last_name, "role": role}
        try:
            user_id = await self.identity.sign_up(email, password, metadata)
        except ProviderRejected as exc:
            raise ValidationError(sanitize_error_message(exc.message)) from exc
        try:
            await self.store.create_profile(
                Profile(
                    id=user_id,
                    role=role,
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                )
            )
        except ConstraintViolation as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        self.logger.info("user_registered", user_id=user_id, role=role)
        return {"user_id": user_id}


__all__ = ["AuthService", "AuthStore", "FlowResult", "UNAUTHENTICATED"]
