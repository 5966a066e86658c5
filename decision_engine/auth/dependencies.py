from __future__ import annotations

from fastapi import HTTPException, Request

from .users import ADMIN

SESSION_KEY = "user"


def require_user(request: Request) -> dict:
    """The logged-in account from the session cookie; 401 when anonymous."""
    user = request.session.get(SESSION_KEY)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_user_id(request: Request) -> str:
    """The caller's participant id."""
    return require_user(request)["username"]


def require_admin(request: Request) -> dict:
    user = require_user(request)
    if user.get("role") != ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
