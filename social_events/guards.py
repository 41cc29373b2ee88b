"""
Authorization checks applied by the request handlers.
"""

from __future__ import annotations

from social_events.errors import Forbidden
from social_events.identity import Identity


def ensure_profile_access(identity: Identity, email: str) -> None:
    if email != identity.email:
        raise Forbidden("Unauthorized - Can only access own profile")


def ensure_event_owner(identity: Identity, event: dict) -> None:
    if event.get("userEmail") != identity.email:
        raise Forbidden("Unauthorized - Can only update own events")
