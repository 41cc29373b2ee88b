"""
Caller identity extraction from bearer credentials.

Credentials look like ``header.payload.signature``. The payload segment is
base64-encoded JSON carrying at least ``email`` (and optionally ``name`` and
``picture``). ``UnverifiedTokenDecoder`` only decodes the payload; swap in a
verifying ``TokenDecoder`` to check signatures and expiry.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from social_events.errors import Unauthorized

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
DEFAULT_DISPLAY_NAME = "Anonymous"


@dataclass(frozen=True)
class Identity:
    email: str
    displayName: str = DEFAULT_DISPLAY_NAME
    photoURL: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "email": self.email,
            "displayName": self.displayName,
            "photoURL": self.photoURL,
        }


class TokenDecoder(Protocol):
    """Turns a raw token (without the scheme prefix) into claims."""

    def decode(self, token: str) -> dict:
        ...


def _b64decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    # urlsafe_b64decode also accepts the standard alphabet.
    return base64.urlsafe_b64decode(padded)


class UnverifiedTokenDecoder:
    """Decodes the payload segment without checking the signature."""

    def decode(self, token: str) -> dict:
        parts = token.split(".")
        if len(parts) < 2 or not parts[1]:
            raise ValueError("Token has no payload segment")
        claims = json.loads(_b64decode(parts[1]).decode("utf-8"))
        if not isinstance(claims, dict):
            raise ValueError("Token payload is not an object")
        return claims


def identity_from_claims(claims: dict) -> Identity:
    email = claims.get("email")
    if not email or not isinstance(email, str):
        raise Unauthorized("Invalid token format")
    return Identity(
        email=email,
        displayName=claims.get("name") or DEFAULT_DISPLAY_NAME,
        photoURL=claims.get("picture") or None,
    )


def extract_identity(
    authorization: Optional[str], decoder: TokenDecoder
) -> Identity:
    """
    Resolve the caller from an ``Authorization`` header value.

    Raises ``Unauthorized`` when the header is missing, uses another scheme,
    or carries a token whose payload cannot be decoded or lacks an email.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise Unauthorized("Unauthorized - No token provided")

    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthorized("Invalid token")

    try:
        claims = decoder.decode(token)
    except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
        # json.JSONDecodeError is a ValueError subclass.
        logger.warning("Token decode failed: %s", exc)
        raise Unauthorized("Invalid token format") from exc

    return identity_from_claims(claims)
