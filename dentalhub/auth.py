"""Password hashing, signed session cookies, and the user dependencies built on them."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, Request, Response, status
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext

from . import database
from .roles import UserRole
from .settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_COOKIE = "dentalhub_session"
SESSION_SALT = "dentalhub-session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7
BCRYPT_MAX_BYTES = 72


@lru_cache
def _session_signer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().secret_key, salt=SESSION_SALT)


def _bcrypt_input(password: str) -> str:
    # bcrypt ignores everything past 72 bytes; cut on a character boundary.
    raw = str(password).encode("utf-8")[:BCRYPT_MAX_BYTES]
    return raw.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    return pwd_context.hash(_bcrypt_input(password))


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(_bcrypt_input(password), password_hash)


def start_session(response: Response, user_id: int) -> None:
    """Attach a signed, time-limited session cookie for the user."""
    response.set_cookie(
        SESSION_COOKIE,
        _session_signer().dumps({"uid": user_id}),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
    )


def end_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)


def session_user_id(request: Request) -> Optional[int]:
    """User id carried by the request's session cookie; None when absent, tampered, or expired."""
    cookie = request.cookies.get(SESSION_COOKIE)
    if not cookie:
        return None
    try:
        claims = _session_signer().loads(cookie, max_age=SESSION_MAX_AGE)
        return int(claims["uid"])
    except (BadSignature, KeyError, TypeError, ValueError):
        return None


def is_admin(record: Optional[dict]) -> bool:
    return bool(record) and record.get("role") == UserRole.ADMIN.value


def get_current_user(request: Request) -> Optional[dict]:
    user_id = session_user_id(request)
    return database.get_user(user_id) if user_id is not None else None


def require_current_user(request: Request) -> dict:
    record = get_current_user(request)
    if not record:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    request.state.current_user = record
    return record


def require_admin_user(request: Request) -> dict:
    record = require_current_user(request)
    if not is_admin(record):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return record


def sanitize_user(record: dict) -> dict:
    """Public view of a user row, without the password hash."""
    return {
        "id": record["id"],
        "username": record["username"],
        "role": record.get("role"),
        "tenant_id": record.get("tenant_id"),
        "is_admin": is_admin(record),
    }
