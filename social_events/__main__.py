"""
Run the API with uvicorn: ``python -m social_events``.
"""

from __future__ import annotations

import logging

import uvicorn

from social_events.config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run("social_events.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
