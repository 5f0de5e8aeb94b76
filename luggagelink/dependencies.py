"""
Dependency wiring for the FastAPI app.

The store is built once in ``create_app`` and kept on ``app.state``; handlers
reach it through these dependencies rather than a module-level singleton.
"""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.requests import HTTPConnection

from luggagelink.config import Settings, get_settings
from luggagelink.db import DbClient, InMemoryDbClient, PostgresDbClient
from luggagelink.relay import ConnectionHub

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings | None = None) -> DbClient:
    """Pick the storage backend from settings: Postgres when DATABASE_URL is set."""
    settings = settings or get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory storage")
        return InMemoryDbClient()
    logger.info("Using SQL storage")
    return PostgresDbClient(settings.database_url)


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_hub(connection: HTTPConnection) -> ConnectionHub:
    return connection.app.state.hub


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
