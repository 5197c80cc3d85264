"""Claims decoding for provider-issued bearer tokens.

Tokens are read, not trusted: signature and expiry checks belong to the
identity provider, which validates the token whenever it is presented on a
data request. These helpers only pull identity claims out of the payload
segment so a session can be keyed by its subject.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Optional

from coursesphere.service.errors import MalformedTokenError


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def decode_claims(token: str) -> dict[str, Any]:
    """Return the claims object of a three-segment bearer token.

    Raises:
        MalformedTokenError: wrong segment count, bad base64url or a payload
            that is not a JSON object.
    """
    if not isinstance(token, str) or not token:
        raise MalformedTokenError("token is empty")
    segments = token.split(".")
    if len(segments) != 3 or not all(segments[:2]):
        raise MalformedTokenError("token must have three dot-separated segments")
    try:
        payload = json.loads(_decode_segment(segments[1]))
    except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
        raise MalformedTokenError("token claims could not be decoded") from exc
    if not isinstance(payload, dict):
        raise MalformedTokenError("token claims must be an object")
    return payload


def decode_subject(token: str) -> str:
    """Extract the subject (user id) claim from an access token."""
    sub = decode_claims(token).get("sub")
    if not isinstance(sub, str) or not sub:
        raise MalformedTokenError("token has no subject claim")
    return sub


def claimed_expiry(token: str) -> Optional[int]:
    """Return the ``exp`` claim as an int, or None when absent or unusable."""
    exp = decode_claims(token).get("exp")
    if isinstance(exp, bool):
        return None
    if isinstance(exp, (int, float)):
        return int(exp)
    if isinstance(exp, str) and exp.isdigit():
        return int(exp)
    return None
