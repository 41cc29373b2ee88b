"""
Composes events with their join records into enriched views.
"""

from __future__ import annotations

import asyncio

from starlette.concurrency import run_in_threadpool

from social_events.db import DocumentStore

PARTICIPANT_PROJECTION = {"_id": 0, "userEmail": 1, "userName": 1, "userPhotoURL": 1}
PARTICIPANT_DETAIL_PROJECTION = {**PARTICIPANT_PROJECTION, "joinedAt": 1}


def participants_for(
    store: DocumentStore, event_id: str, with_joined_at: bool = False
) -> list[dict]:
    """Join records for one event, in the order the store returns them."""
    projection = (
        PARTICIPANT_DETAIL_PROJECTION if with_joined_at else PARTICIPANT_PROJECTION
    )
    return store.joins.find_many({"eventId": event_id}, projection=projection)


def enrich_event(store: DocumentStore, event: dict) -> dict:
    participants = participants_for(store, event["_id"])
    return {
        **event,
        "participants": participants,
        "participantsCount": len(participants),
    }


async def enrich_events(store: DocumentStore, events: list[dict]) -> list[dict]:
    """
    Enrich every event, running the participant lookups concurrently.

    ``asyncio.gather`` keeps results in input order, so the caller's
    ordering (e.g. by event date) survives.
    """
    return list(
        await asyncio.gather(
            *(run_in_threadpool(enrich_event, store, event) for event in events)
        )
    )
