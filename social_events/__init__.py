"""
Backend package for the social events platform.

Provides a FastAPI application over a document store with three
collections (users, events, joined events), plus an in-memory store for
local development and tests.
"""
