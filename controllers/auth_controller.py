"""Administrator login check with per-client rate limiting."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict

from fastapi import HTTPException, Request

from services.rate_limiter import FixedWindowRateLimiter

LOGGER = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 50
MAX_PASSWORD_LENGTH = 100


def client_address(request: Request) -> str:
    """First `X-Forwarded-For` hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


async def login(request: Request, username: str, password: str) -> Dict[str, Any]:
    """Validate admin credentials.

    Raises:
        HTTPException: 429 while the client is locked out, 400 on malformed
            input, 401 on wrong credentials.
    """
    settings = request.app.state.settings
    limiter: FixedWindowRateLimiter = request.app.state.login_limiter
    client = client_address(request)

    if limiter.is_limited(client):
        raise HTTPException(status_code=429, detail="Too many login attempts, try again later")

    if not username or not username.strip() or not password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    if len(username) > MAX_USERNAME_LENGTH or len(password) > MAX_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Username or password is too long")

    user_ok = hmac.compare_digest(username.strip().encode(), settings.admin_username.encode())
    password_ok = hmac.compare_digest(password.encode(), settings.admin_password.encode())
    if user_ok and password_ok:
        limiter.reset(client)
        return {"success": True, "user": {"username": settings.admin_username, "role": "admin"}}

    attempts = limiter.hit(client)
    LOGGER.warning("Failed admin login from %s (%s in window)", client, attempts)
    raise HTTPException(status_code=401, detail="Invalid username or password")
