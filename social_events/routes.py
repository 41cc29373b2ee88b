"""
HTTP routes for the social events API.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from fastapi import APIRouter, Body, Depends, Query
from starlette.concurrency import run_in_threadpool

from social_events.composer import enrich_events, participants_for
from social_events.db import (
    ASCENDING,
    DESCENDING,
    DocumentStore,
    DuplicateKeyError,
    utcnow,
)
from social_events.dependencies import get_identity, get_store
from social_events.errors import (
    ApiError,
    Conflict,
    InternalError,
    InvalidInput,
    NotFound,
)
from social_events.guards import ensure_event_owner, ensure_profile_access
from social_events.identity import Identity
from social_events.schemas import (
    EventCreateRequest,
    EventResponse,
    EventUpdateRequest,
    JoinResponse,
    UserResponse,
    UserUpsertRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
LIMIT_PATTERN = re.compile(r"^\s*([+-]?\d+)")

REQUIRED_EVENT_FIELDS = ("title", "description", "eventType", "location", "eventDate")
MUTABLE_EVENT_FIELDS = (
    "title",
    "description",
    "eventType",
    "thumbnailImage",
    "location",
    "eventDate",
)
DEFAULT_PREFERENCES = {"notifications": True, "emailUpdates": True}


@contextmanager
def _failures(action: str, error: type[ApiError] = InternalError) -> Iterator[None]:
    """Let API errors through; log anything else and answer with ``error``."""
    try:
        yield
    except ApiError:
        raise
    except Exception as exc:
        logger.exception("%s error: %s", action, exc)
        raise error() from exc


def _parse_event_id(value: str) -> str:
    if not EVENT_ID_PATTERN.match(value):
        raise ValueError(f"Malformed event id: {value!r}")
    return value


def _parse_limit(value: Optional[str]) -> int:
    """Leading integer of ``value``; anything unparsable means no cap (0)."""
    match = LIMIT_PATTERN.match(value or "")
    return abs(int(match.group(1))) if match else 0


def _join_record(event_id: str, identity: Identity) -> dict:
    return {
        "eventId": event_id,
        "userEmail": identity.email,
        "userName": identity.displayName,
        "userPhotoURL": identity.photoURL,
        "joinedAt": utcnow(),
    }


@router.post("/users", response_model=UserResponse)
def upsert_user(
    payload: Optional[UserUpsertRequest] = None,
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    payload = payload or UserUpsertRequest()
    with _failures("Create/Update User"):
        update = {
            "email": identity.email,
            "displayName": payload.displayName or identity.displayName,
            "photoURL": payload.photoURL or identity.photoURL,
            "preferences": (
                payload.preferences.model_dump(exclude_unset=True)
                if payload.preferences
                else dict(DEFAULT_PREFERENCES)
            ),
            "updatedAt": utcnow(),
        }
        store.users.update_one({"email": identity.email}, update, upsert=True)
        return store.users.find_one({"email": identity.email})


@router.get("/users/{email}", response_model=UserResponse)
def get_user(
    email: str,
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    ensure_profile_access(identity, email)
    with _failures("Get User"):
        user = store.users.find_one({"email": email})
        if not user:
            raise NotFound("User not found")
        return user


@router.get(
    "/events",
    response_model=list[EventResponse],
    response_model_exclude_unset=True,
)
async def list_events(
    event_type: Optional[str] = Query(default=None, alias="type"),
    search: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    store: DocumentStore = Depends(get_store),
):
    """Upcoming events, soonest first, each with its participants."""
    with _failures("Get Events"):
        query: dict = {"eventDate": {"$gte": utcnow()}}
        if event_type:
            query["eventType"] = event_type
        if search:
            query["title"] = {"$icontains": search}
        events = await run_in_threadpool(
            store.events.find_many,
            query,
            sort=[("eventDate", ASCENDING)],
            limit=_parse_limit(limit),
        )
        return await enrich_events(store, events)


@router.get(
    "/events/{event_id}",
    response_model=EventResponse,
    response_model_exclude_unset=True,
)
def get_event(event_id: str, store: DocumentStore = Depends(get_store)):
    with _failures("Get Event"):
        event = store.events.find_one({"_id": _parse_event_id(event_id)})
        if not event:
            raise NotFound("Event not found")
        event["participants"] = participants_for(
            store, event["_id"], with_joined_at=True
        )
        return event


@router.post(
    "/events",
    response_model=EventResponse,
    response_model_exclude_unset=True,
    status_code=201,
)
def create_event(
    payload: EventCreateRequest,
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    """
    Create an event owned by the caller and join the caller to it.

    If the owner's join record cannot be written the event is removed again,
    so no event exists without its owner among the participants.
    """
    if any(not getattr(payload, field) for field in REQUIRED_EVENT_FIELDS):
        raise InvalidInput("Missing required fields")

    with _failures("Create Event", InvalidInput):
        now = utcnow()
        event = store.events.insert_one(
            {
                "title": payload.title,
                "description": payload.description,
                "eventType": payload.eventType,
                "thumbnailImage": payload.thumbnailImage,
                "location": payload.location,
                "eventDate": payload.eventDate,
                "userEmail": identity.email,
                "userName": identity.displayName,
                "userPhotoURL": identity.photoURL,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        try:
            store.joins.insert_one(_join_record(event["_id"], identity))
        except Exception:
            logger.warning(
                "Owner join failed for event %s, removing the event", event["_id"]
            )
            store.events.delete_one({"_id": event["_id"]})
            raise
        return event


@router.put(
    "/events/{event_id}",
    response_model=EventResponse,
    response_model_exclude_unset=True,
)
def update_event(
    event_id: str,
    body: Any = Body(default=None),
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    """
    Update the caller's own event.

    The body is validated only after the ownership check, so a non-owner
    always gets 403 whatever they send.
    """
    with _failures("Update Event"):
        key = _parse_event_id(event_id)
        event = store.events.find_one({"_id": key})
        if not event:
            raise NotFound("Event not found")
        ensure_event_owner(identity, event)

        payload = EventUpdateRequest.model_validate(body or {})
        # Empty values keep what is stored; owner fields are never touched.
        update = {
            field: getattr(payload, field) or event.get(field)
            for field in MUTABLE_EVENT_FIELDS
        }
        update["updatedAt"] = utcnow()
        updated = store.events.find_one_and_update({"_id": key}, update)
        if updated is None:
            raise NotFound("Event not found")
        return updated


@router.post("/events/{event_id}/join", response_model=JoinResponse, status_code=201)
def join_event(
    event_id: str,
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    with _failures("Join Event"):
        key = _parse_event_id(event_id)
        if not store.events.find_one({"_id": key}):
            raise NotFound("Event not found")
        if store.joins.find_one({"eventId": key, "userEmail": identity.email}):
            raise Conflict("Already joined this event")
        try:
            store.joins.insert_one(_join_record(key, identity))
        except DuplicateKeyError as exc:
            # Lost a race against a concurrent join by the same user.
            raise Conflict("Already joined this event") from exc
        return JoinResponse(message="Successfully joined event")


@router.get(
    "/joined/events",
    response_model=list[EventResponse],
    response_model_exclude_unset=True,
)
async def list_joined_events(
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    """Events the caller joined, without participant data."""
    with _failures("Get Joined Events"):
        joins = await run_in_threadpool(
            store.joins.find_many,
            {"userEmail": identity.email},
            sort=[("joinedAt", DESCENDING)],
        )
        event_ids = [join["eventId"] for join in joins]
        if not event_ids:
            return []
        return await run_in_threadpool(
            store.events.find_many,
            {"_id": {"$in": event_ids}},
            sort=[("eventDate", ASCENDING)],
        )


@router.get(
    "/manage/events",
    response_model=list[EventResponse],
    response_model_exclude_unset=True,
)
async def list_managed_events(
    identity: Identity = Depends(get_identity),
    store: DocumentStore = Depends(get_store),
):
    with _failures("Get Managed Events"):
        events = await run_in_threadpool(
            store.events.find_many,
            {"userEmail": identity.email},
            sort=[("eventDate", ASCENDING)],
        )
        return await enrich_events(store, events)
