"""FastAPI dependency functions for the admin API.

Authentication
--------------
Callers present ``Authorization: Bearer <api-key>``. Only the SHA-256 hash of
a key is stored (app.models.api_key). ``require_admin`` additionally demands
that the key's owner has the ``admin`` role; any other user gets 403.

Rate limiting
-------------
A sliding-window limiter (in-memory) keyed by ``api_key.id``. The limit is
the key's ``rate_limit_rpm`` or ``RATE_LIMIT_API_KEY_RPM`` (default 60).
Every authenticated response carries:

    X-RateLimit-Remaining   Requests left in the current 60-second window
    X-RateLimit-Reset       Unix timestamp when the window resets (UTC)
"""

import hashlib
import logging
import math
import os
import time
from collections import defaultdict
from datetime import datetime, timezone
from threading import Lock
from typing import Annotated

from fastapi import Depends, HTTPException, Response, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.database import get_db
from app.models.api_key import ApiKey
from app.models.user import User

logger = logging.getLogger(__name__)

_DEFAULT_API_KEY_RPM: int = int(os.environ.get("RATE_LIMIT_API_KEY_RPM", "60"))

_api_key_store: dict[int, list[float]] = defaultdict(list)
_rate_limit_lock = Lock()

_WINDOW_SECONDS = 60.0


def _sliding_window_check(
    store: dict,
    key: int | str,
    rpm: int,
    response: Response | None = None,
) -> None:
    """Raise HTTP 429 if ``key`` made ``rpm`` requests in the last 60 seconds.

    Attaches ``X-RateLimit-Remaining`` and ``X-RateLimit-Reset`` to
    ``response`` when provided.
    """
    now = time.time()
    window_start = now - _WINDOW_SECONDS

    with _rate_limit_lock:
        store[key] = [t for t in store[key] if t >= window_start]
        current_count = len(store[key])

        remaining = max(0, rpm - current_count - 1)
        reset_at = math.ceil(now + _WINDOW_SECONDS)

        if response is not None:
            response.headers["X-RateLimit-Remaining"] = str(remaining)
            response.headers["X-RateLimit-Reset"] = str(reset_at)

        if current_count >= rpm:
            logger.warning(
                "Rate limit exceeded",
                extra={"identity": str(key), "rpm_limit": rpm, "current_count": current_count},
            )
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded: {rpm} requests per minute.",
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_at),
                },
            )

        store[key].append(now)


# ── API key auth ──────────────────────────────────────────────────────────────

_bearer_scheme = HTTPBearer(auto_error=False)


def _hash_key(raw_key: str) -> str:
    """SHA-256 hex digest of the raw API key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def get_api_key_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Security(_bearer_scheme)
    ] = None,
    response: Response = None,  # type: ignore[assignment]
) -> tuple[ApiKey, User]:
    """Resolve Bearer token → ApiKey + User.

    Raises HTTP 401 for missing/invalid tokens and 403 for revoked keys.
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization header. Use: Bearer <api-key>",
        )

    raw_key = credentials.credentials
    key_hash = _hash_key(raw_key)

    db = get_db()
    try:
        api_key = db.query(ApiKey).filter(ApiKey.key_hash == key_hash).first()
        if api_key is None:
            logger.warning("Invalid API key presented", extra={"key_prefix": raw_key[:8]})
            raise HTTPException(status_code=401, detail="Invalid API key.")
        if api_key.revoked:
            logger.warning(
                "Revoked API key used",
                extra={"api_key_id": api_key.id, "user_id": api_key.user_id},
            )
            raise HTTPException(status_code=403, detail="API key has been revoked.")

        rpm = api_key.rate_limit_rpm if api_key.rate_limit_rpm > 0 else _DEFAULT_API_KEY_RPM
        _sliding_window_check(_api_key_store, api_key.id, rpm, response)

        api_key.last_used_at = datetime.now(timezone.utc).replace(tzinfo=None)
        db.commit()

        user = db.get(User, api_key.user_id)
        if user is None:
            raise HTTPException(status_code=401, detail="User not found.")

        db.expunge(api_key)
        db.expunge(user)
        return api_key, user
    finally:
        db.close()


def require_admin(
    ctx: Annotated[tuple[ApiKey, User], Depends(get_api_key_user)],
) -> User:
    """Return the authenticated User if they hold the admin role, else 403."""
    _, user = ctx
    if not user.is_admin:
        logger.warning("Non-admin user denied admin access", extra={"user_id": user.id})
        raise HTTPException(status_code=403, detail="Admin role required.")
    return user
