"""
FastAPI application entry point for the LuggageLink backend.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from luggagelink import auth, relay, routes
from luggagelink.config import Settings, get_settings
from luggagelink.db import DbClient
from luggagelink.dependencies import build_db_client
from luggagelink.errors import install_exception_handlers
from luggagelink.relay import ConnectionHub


def create_app(
    db: Optional[DbClient] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="LuggageLink Backend", version="0.1.0")

    app.state.settings = settings
    app.state.db = db if db is not None else build_db_client(settings)
    app.state.hub = ConnectionHub()

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        same_site="lax",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)

    app.include_router(auth.router, prefix=settings.api_prefix)
    app.include_router(routes.router, prefix=settings.api_prefix)
    app.include_router(relay.router)
    return app
