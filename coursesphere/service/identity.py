from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import threading
import time
import uuid
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from coursesphere.logging import get_logger, sanitize_error_message
from coursesphere.service.errors import MalformedTokenError, UpstreamError
from coursesphere.service.tokens import claimed_expiry, decode_claims
from coursesphere.storage.models import TokenTriple

logger = get_logger(__name__)


class ProviderRejected(Exception):
    """The identity provider refused the request (4xx)."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def code_challenge_for(verifier: str) -> str:
    """S256 PKCE challenge: unpadded base64url of the verifier's SHA-256."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> TokenTriple: ...

    async def sign_out(self, access_token: str) -> None: ...

    async def reset_password_for_email(
        self, email: str, redirect_to: str, code_challenge: str
    ) -> None: ...

    async def exchange_code_for_session(self, code: str, code_verifier: str) -> TokenTriple: ...

    async def update_user(self, access_token: str, password: str) -> None: ...

    async def refresh_session(self, refresh_token: str) -> TokenTriple: ...

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> str: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"identity provider returned {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "error_description", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"identity provider returned {response.status_code}"


class SupabaseIdentityProvider:
    """GoTrue REST client.

    Every call opens its own ``httpx.AsyncClient`` so a cancelled request
    tears down its connection. 4xx answers become :class:`ProviderRejected`
    with the provider's message; 5xx and transport failures become
    :class:`UpstreamError`.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        headers["Authorization"] = f"Bearer {access_token or self.anon_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/auth/v1/{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=self._headers(access_token),
                )
        except httpx.TimeoutException as exc:
            logger.error("identity_provider_timeout", path=path, error=str(exc))
            raise UpstreamError("identity provider timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(
                "identity_provider_transport_error",
                path=path,
                error_type=type(exc).__name__,
                error=sanitize_error_message(str(exc)),
            )
            raise UpstreamError("identity provider unreachable") from exc

        if response.status_code >= 500:
            logger.error(
                "identity_provider_server_error",
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamError("identity provider failed")
        if response.status_code >= 400:
            message = _error_message(response)
            logger.info(
                "identity_provider_rejected",
                path=path,
                status_code=response.status_code,
            )
            raise ProviderRejected(message, response.status_code)
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("identity provider returned invalid JSON") from exc
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _triple(body: Dict[str, Any]) -> TokenTriple:
        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise UpstreamError("identity provider returned an incomplete session")
        expires_at = body.get("expires_at")
        if expires_at is None and body.get("expires_in") is not None:
            expires_at = int(time.time()) + int(body["expires_in"])
        if expires_at is None:
            try:
                expires_at = claimed_expiry(access_token)
            except MalformedTokenError:
                expires_at = None
        if expires_at is None:
            raise UpstreamError("identity provider returned a session without expiry")
        user = body.get("user")
        return TokenTriple(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(expires_at),
            user=user if isinstance(user, dict) else None,
        )

    async def sign_in(self, email: str, password: str) -> TokenTriple:
        body = await self._request(
            "POST",
            "token",
            params={"grant_type": "password"},
            payload={"email": email, "password": password},
        )
        return self._triple(body)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "logout", access_token=access_token)

    async def reset_password_for_email(
        self, email: str, redirect_to: str, code_challenge: str
    ) -> None:
        await self._request(
            "POST",
            "recover",
            params={"redirect_to": redirect_to},
            payload={
                "email": email,
                "code_challenge": code_challenge,
                "code_challenge_method": "s256",
            },
        )

    async def exchange_code_for_session(self, code: str, code_verifier: str) -> TokenTriple:
        body = await self._request(
            "POST",
            "token",
            params={"grant_type": "pkce"},
            payload={"auth_code": code, "code_verifier": code_verifier},
        )
        return self._triple(body)

    async def update_user(self, access_token: str, password: str) -> None:
        await self._request(
            "PUT", "user", payload={"password": password}, access_token=access_token
        )

    async def refresh_session(self, refresh_token: str) -> TokenTriple:
        body = await self._request(
            "POST",
            "token",
            params={"grant_type": "refresh_token"},
            payload={"refresh_token": refresh_token},
        )
        return self._triple(body)

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        body = await self._request(
            "POST",
            "signup",
            payload={"email": email, "password": password, "data": metadata},
        )
        user = body.get("user") if isinstance(body.get("user"), dict) else body
        user_id = user.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise UpstreamError("identity provider did not return a user id")
        return user_id


class MemoryIdentityProvider:
    """In-process stand-in for the hosted identity service.

    Issues HS256 JWT-shaped access tokens carrying ``sub`` and ``exp``,
    rotates refresh tokens on every refresh, and keeps reset codes
    single-use and bound to their PKCE challenge. Used by tests and by
    ``USE_MEMORY_STORE`` deployments.
    """

    def __init__(
        self,
        *,
        access_ttl_seconds: int = 3600,
        reset_code_ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.access_ttl_seconds = access_ttl_seconds
        self.reset_code_ttl_seconds = reset_code_ttl_seconds
        self.clock = clock
        self._secret = secrets.token_bytes(32)
        self._lock = threading.RLock()
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._refresh_tokens: Dict[str, str] = {}
        self._revoked_access: set[str] = set()
        self._reset_codes: Dict[str, Dict[str, Any]] = {}
        self.outbox: list[Dict[str, Any]] = []

    @staticmethod
    def _hash_password(password: str, salt: str) -> str:
        return hashlib.sha256(f"{salt}:{password}".encode()).hexdigest()

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _encode_jwt(self, payload: Dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        signature = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return f"{signing_input}.{self._encode_segment(signature)}"

    def _authenticate(self, access_token: str) -> Dict[str, Any]:
        try:
            signing_input, signature = access_token.rsplit(".", 1)
        except ValueError as exc:
            raise ProviderRejected("invalid JWT", 401) from exc
        expected = self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )
        if not hmac.compare_digest(expected, signature):
            raise ProviderRejected("invalid JWT", 401)
        try:
            claims = decode_claims(access_token)
        except MalformedTokenError as exc:
            raise ProviderRejected("invalid JWT", 401) from exc
        if access_token in self._revoked_access:
            raise ProviderRejected("session not found", 401)
        if int(claims.get("exp", 0)) <= self.clock():
            raise ProviderRejected("JWT expired", 401)
        account = self._account_by_id(claims.get("sub"))
        if account is None:
            raise ProviderRejected("user not found", 404)
        return account

    def _account_by_id(self, user_id: Any) -> Optional[Dict[str, Any]]:
        for account in self._accounts.values():
            if account["id"] == user_id:
                return account
        return None

    def _issue(self, account: Dict[str, Any]) -> TokenTriple:
        now = int(self.clock())
        expires_at = now + self.access_ttl_seconds
        access_token = self._encode_jwt(
            {
                "sub": account["id"],
                "email": account["email"],
                "exp": expires_at,
                "iat": now,
                "session_id": uuid.uuid4().hex,
            }
        )
        refresh_token = secrets.token_urlsafe(24)
        self._refresh_tokens[refresh_token] = account["id"]
        return TokenTriple(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            user={"id": account["id"], "email": account["email"], **account["metadata"]},
        )

    def add_user(
        self,
        email: str,
        password: str,
        *,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Seed an account directly; returns its id."""
        key = email.strip().lower()
        salt = secrets.token_hex(8)
        with self._lock:
            account = {
                "id": user_id or str(uuid.uuid4()),
                "email": key,
                "salt": salt,
                "password_hash": self._hash_password(password, salt),
                "metadata": dict(metadata or {}),
            }
            self._accounts[key] = account
        return account["id"]

    def last_reset_code(self, email: str) -> Optional[str]:
        """Most recent reset code mailed to ``email``, if any."""
        key = email.strip().lower()
        with self._lock:
            for message in reversed(self.outbox):
                if message["email"] == key:
                    return message["code"]
        return None

    async def sign_in(self, email: str, password: str) -> TokenTriple:
        with self._lock:
            account = self._accounts.get(email.strip().lower())
            if account is None or not hmac.compare_digest(
                account["password_hash"], self._hash_password(password, account["salt"])
            ):
                raise ProviderRejected("Invalid login credentials", 400)
            return self._issue(account)

    async def sign_out(self, access_token: str) -> None:
        with self._lock:
            account = self._authenticate(access_token)
            self._revoked_access.add(access_token)
            self._refresh_tokens = {
                token: owner
                for token, owner in self._refresh_tokens.items()
                if owner != account["id"]
            }

    async def reset_password_for_email(
        self, email: str, redirect_to: str, code_challenge: str
    ) -> None:
        key = email.strip().lower()
        with self._lock:
            account = self._accounts.get(key)
            if account is None:
                # Unknown addresses get the same silent success
                return
            code = str(uuid.uuid4())
            self._reset_codes[code] = {
                "user_id": account["id"],
                "challenge": code_challenge,
                "expires_at": self.clock() + self.reset_code_ttl_seconds,
            }
            self.outbox.append(
                {"email": key, "code": code, "link": f"{redirect_to}?code={code}"}
            )

    async def exchange_code_for_session(self, code: str, code_verifier: str) -> TokenTriple:
        with self._lock:
            entry = self._reset_codes.pop(code, None)
            if entry is None:
                raise ProviderRejected("invalid flow state, no valid flow state found", 404)
            if entry["expires_at"] <= self.clock():
                raise ProviderRejected("invalid flow state, flow state has expired", 400)
            if not hmac.compare_digest(entry["challenge"], code_challenge_for(code_verifier)):
                raise ProviderRejected("code challenge does not match previously saved code verifier", 400)
            account = self._account_by_id(entry["user_id"])
            if account is None:
                raise ProviderRejected("user not found", 404)
            return self._issue(account)

    async def update_user(self, access_token: str, password: str) -> None:
        with self._lock:
            account = self._authenticate(access_token)
            if hmac.compare_digest(
                account["password_hash"], self._hash_password(password, account["salt"])
            ):
                raise ProviderRejected(
                    "New password should be different from the old password.", 422
                )
            account["salt"] = secrets.token_hex(8)
            account["password_hash"] = self._hash_password(password, account["salt"])

    async def refresh_session(self, refresh_token: str) -> TokenTriple:
        with self._lock:
            user_id = self._refresh_tokens.pop(refresh_token, None)
            account = self._account_by_id(user_id) if user_id else None
            if account is None:
                raise ProviderRejected("Invalid Refresh Token: Refresh Token Not Found", 400)
            return self._issue(account)

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        key = email.strip().lower()
        with self._lock:
            if key in self._accounts:
                raise ProviderRejected("User already registered", 422)
            return self.add_user(key, password, metadata=metadata)


__all__ = [
    "IdentityProvider",
    "ProviderRejected",
    "SupabaseIdentityProvider",
    "MemoryIdentityProvider",
    "code_challenge_for",
]
