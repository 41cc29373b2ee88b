"""
Dependency wiring for the FastAPI app.

The store and token decoder are built once in ``create_app`` and kept on
``app.state``; handlers receive them through these dependencies.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header, Request

from social_events.config import Settings
from social_events.db import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from social_events.identity import Identity, TokenDecoder, extract_identity

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> DocumentStore:
    """Pick the store backend from settings, falling back to in-memory."""
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore()
    logger.info("Using SQL document store")
    return SqlDocumentStore(settings.database_url)


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_token_decoder(request: Request) -> TokenDecoder:
    return request.app.state.token_decoder


def get_identity(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> Identity:
    identity = extract_identity(authorization, get_token_decoder(request))
    request.state.identity = identity
    return identity
