"""
FastAPI application entry point for the social events backend.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from social_events.config import Settings, get_settings
from social_events.db import DocumentStore
from social_events.dependencies import build_store
from social_events.errors import register_exception_handlers
from social_events.identity import TokenDecoder, UnverifiedTokenDecoder
from social_events.routes import router

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization", "Accept"]


async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %s (%.1f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


def root() -> str:
    return "Social Events Platform Server is Running"


def create_app(
    store: Optional[DocumentStore] = None,
    token_decoder: Optional[TokenDecoder] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Social Events Backend (FastAPI)", version="0.1.0")
    app.state.store = store if store is not None else build_store(settings)
    app.state.token_decoder = token_decoder or UnverifiedTokenDecoder()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
        allow_credentials=False,
    )
    if settings.log_requests:
        app.middleware("http")(log_requests)
    register_exception_handlers(app)

    app.add_api_route("/", root, methods=["GET"], response_class=PlainTextResponse)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
