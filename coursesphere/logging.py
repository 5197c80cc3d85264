from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Request id shared by log lines and error envelopes
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current request context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def email_fingerprint(email: str) -> str:
    """Stable, non-reversible handle for an email address in log lines."""
    return hashlib.sha256(email.strip().lower().encode()).hexdigest()[:16]


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


# Session material never reaches a log line, not even partially
_SECRET_KEYS = (
    "password",
    "secret",
    "access_token",
    "refresh_token",
    "code_verifier",
    "apikey",
    "authorization",
)
# Contact details keep a short prefix/suffix for support lookups
_CONTACT_KEYS = ("email", "phone")
_SAFE_KEYS = {"error_code", "status_code", "email_fingerprint", "pg_code"}


def _redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        lower_key = key.lower()
        if lower_key in _SAFE_KEYS or not isinstance(value, str):
            continue
        if any(marker in lower_key for marker in _SECRET_KEYS):
            event_dict[key] = "[redacted]"
        elif any(marker in lower_key for marker in _CONTACT_KEYS) and len(value) > 4:
            event_dict[key] = value[:2] + "***" + value[-2:]
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """(Re)configure structlog for the process.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: render one JSON object per line
        development_mode: colored console output, overrides ``json_output``
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))
    else:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )

    level = getattr(logging, log_level.upper(), logging.INFO)
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# Fragments of upstream error text that must not be echoed to API clients
_SENSITIVE_ERROR_PATTERNS = [
    r"(?i)\b(select\s+.{0,50}?\s+from|insert\s+into|update\s+\w+\s+set|delete\s+from)\b.{0,50}",
    r"(?i)\bduplicate key value violates unique constraint\s+\"[^\"]*\"",
    r"(?i)/(?:home|var|etc|usr|opt|tmp)/[^\s]+",
    r"(?i)(password|secret|token|key|credential|api.?key)\s*[:=]\s*[^\s]+",
    r"(?i)traceback\s*\(most recent call last\)",
    r"(?i)https?://[^\s]+",
]

_SENSITIVE_PATTERNS_COMPILED = [re.compile(p) for p in _SENSITIVE_ERROR_PATTERNS]

_MAX_CLIENT_MESSAGE = 300


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Strip query text, paths, inline credentials and URLs from a provider message.

    Identity-provider messages such as "Password should be at least 6
    characters" pass through unchanged and are shown to the user; anything
    matching the patterns above is replaced with ``replacement``.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"

    result = error
    for pattern in _SENSITIVE_PATTERNS_COMPILED:
        result = pattern.sub(replacement, result)

    if len(result) > _MAX_CLIENT_MESSAGE:
        result = result[: _MAX_CLIENT_MESSAGE - 3] + "..."
    return result
