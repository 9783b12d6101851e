"""Shared FastAPI dependencies."""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from src.config import settings
from src.services.dispatcher import Dispatcher

_ADMIN_SCHEME = "AdminSecret "

_dispatcher = Dispatcher()


def get_dispatcher() -> Dispatcher:
    return _dispatcher


def require_operator(authorization: Optional[str] = Header(default=None)) -> None:
    """Operator endpoints need ``Authorization: AdminSecret <key>``."""
    if not settings.admin_secret_key:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Operator access is not configured")
    if not authorization or not authorization.startswith(_ADMIN_SCHEME):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing admin secret")
    provided = authorization[len(_ADMIN_SCHEME):].strip()
    if not secrets.compare_digest(provided, settings.admin_secret_key):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid admin secret")
