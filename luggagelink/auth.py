"""
Session-cookie authentication: register, login, logout and the current user.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from luggagelink.config import SESSION_USER_KEY
from luggagelink.db import DbClient
from luggagelink.dependencies import get_db_client
from luggagelink.records import User
from luggagelink.schemas import LoginRequest, RegisterRequest
from luggagelink.security import verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


def _start_session(request: Request, user: User) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id


def get_current_user(
    request: Request, db: DbClient = Depends(get_db_client)
) -> User:
    """Resolve the session principal or fail with 401."""
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.get_user(user_id)
    if not user:
        request.session.clear()
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


@router.post("/register", status_code=201)
def register(
    payload: RegisterRequest,
    request: Request,
    db: DbClient = Depends(get_db_client),
):
    if db.get_user_by_email(str(payload.email)):
        raise HTTPException(status_code=400, detail="Email already exists")
    user = db.create_user(payload.to_record())
    _start_session(request, user)
    logger.info("Registered user %s", user.id)
    return user.as_dict()


@router.post("/login")
def login(
    payload: LoginRequest,
    request: Request,
    db: DbClient = Depends(get_db_client),
):
    user = db.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password):
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    _start_session(request, user)
    return user.as_dict()


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


@router.get("/user")
def current_user(user: User = Depends(get_current_user)):
    return user.as_dict()
