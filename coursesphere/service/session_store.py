from __future__ import annotations

import threading
from typing import Optional, Protocol

from fastapi import Request, Response

from coursesphere.config import Settings
from coursesphere.logging import get_logger
from coursesphere.service.errors import MalformedTokenError
from coursesphere.service.tokens import decode_subject
from coursesphere.storage.models import Session

logger = get_logger(__name__)

ACCESS_TOKEN_COOKIE = "sb-auth-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"
EXPIRES_AT_COOKIE = "sb-expires-at"
CODE_VERIFIER_COOKIE = "sb-code-verifier"

SESSION_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, EXPIRES_AT_COOKIE)

# Reset links are short-lived; the verifier does not need to outlive them
CODE_VERIFIER_MAX_AGE_SECONDS = 60 * 60


class SessionStore(Protocol):
    def commit(self, session: Session) -> None: ...

    def read(self) -> Optional[Session]: ...

    def clear(self) -> None: ...

    def put_code_verifier(self, verifier: str) -> None: ...

    def pop_code_verifier(self) -> Optional[str]: ...


def _parse_session(
    access_token: Optional[str],
    refresh_token: Optional[str],
    expires_raw: Optional[str],
) -> Optional[Session]:
    """Rebuild a Session from its stored fields; any gap yields None."""
    if not access_token or not refresh_token or not expires_raw:
        return None
    try:
        expires_at = int(expires_raw)
    except (TypeError, ValueError):
        return None
    try:
        user_id = decode_subject(access_token)
    except MalformedTokenError:
        logger.warning("stored_session_token_malformed")
        return None
    return Session(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        user_id=user_id,
    )


class CookieSessionStore:
    """Session fields held in HttpOnly cookies scoped to the app origin.

    Reads come from the inbound request; writes are staged on the outbound
    response, so commit and clear land as one Set-Cookie batch. Values
    written during this request are visible to later reads in the same
    request.
    """

    def __init__(self, request: Request, response: Response, settings: Settings) -> None:
        self.request = request
        self.response = response
        self.settings = settings
        self._pending: Optional[dict[str, Optional[str]]] = None

    def _cookie_kwargs(self) -> dict:
        return {
            "httponly": True,
            "secure": self.settings.session_cookie_secure,
            "samesite": self.settings.session_cookie_samesite,
            "path": "/",
        }

    def _current(self, name: str) -> Optional[str]:
        if self._pending is not None and name in self._pending:
            return self._pending[name]
        return self.request.cookies.get(name)

    def commit(self, session: Session) -> None:
        max_age = self.settings.session_cookie_max_age_days * 24 * 60 * 60
        values = {
            ACCESS_TOKEN_COOKIE: session.access_token,
            REFRESH_TOKEN_COOKIE: session.refresh_token,
            EXPIRES_AT_COOKIE: str(int(session.expires_at)),
        }
        for name, value in values.items():
            self.response.set_cookie(name, value, max_age=max_age, **self._cookie_kwargs())
        self._pending = {**(self._pending or {}), **values}

    def read(self) -> Optional[Session]:
        return _parse_session(
            self._current(ACCESS_TOKEN_COOKIE),
            self._current(REFRESH_TOKEN_COOKIE),
            self._current(EXPIRES_AT_COOKIE),
        )

    def clear(self) -> None:
        kwargs = self._cookie_kwargs()
        for name in SESSION_COOKIES:
            self.response.delete_cookie(
                name,
                path=kwargs["path"],
                secure=kwargs["secure"],
                httponly=True,
                samesite=kwargs["samesite"],
            )
        self._pending = {**(self._pending or {}), **{name: None for name in SESSION_COOKIES}}

    def put_code_verifier(self, verifier: str) -> None:
        self.response.set_cookie(
            CODE_VERIFIER_COOKIE,
            verifier,
            max_age=CODE_VERIFIER_MAX_AGE_SECONDS,
            **self._cookie_kwargs(),
        )
        self._pending = {**(self._pending or {}), CODE_VERIFIER_COOKIE: verifier}

    def pop_code_verifier(self) -> Optional[str]:
        verifier = self._current(CODE_VERIFIER_COOKIE)
        if verifier:
            kwargs = self._cookie_kwargs()
            self.response.delete_cookie(
                CODE_VERIFIER_COOKIE,
                path=kwargs["path"],
                secure=kwargs["secure"],
                httponly=True,
                samesite=kwargs["samesite"],
            )
            self._pending = {**(self._pending or {}), CODE_VERIFIER_COOKIE: None}
        return verifier


class MemorySessionStore:
    """In-process session holder for tests and scripts.

    The three fields live in one tuple that is swapped under a lock, so a
    reader never sees a half-written or half-cleared record.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fields: Optional[tuple[str, str, str]] = None
        self._code_verifier: Optional[str] = None

    def commit(self, session: Session) -> None:
        with self._lock:
            self._fields = (
                session.access_token,
                session.refresh_token,
                str(int(session.expires_at)),
            )

    def read(self) -> Optional[Session]:
        with self._lock:
            fields = self._fields
        if fields is None:
            return None
        return _parse_session(*fields)

    def clear(self) -> None:
        with self._lock:
            self._fields = None

    def put_code_verifier(self, verifier: str) -> None:
        with self._lock:
            self._code_verifier = verifier

    def pop_code_verifier(self) -> Optional[str]:
        with self._lock:
            verifier, self._code_verifier = self._code_verifier, None
        return verifier


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "REFRESH_TOKEN_COOKIE",
    "EXPIRES_AT_COOKIE",
    "CODE_VERIFIER_COOKIE",
    "SessionStore",
    "CookieSessionStore",
    "MemorySessionStore",
]
