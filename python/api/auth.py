"""
Password hashing and session cookies

Passwords are hashed with bcrypt. Sessions are server-side rows keyed
by an opaque random token that travels in an HTTP-only cookie.
"""

import logging
import secrets
from datetime import datetime, timedelta

import bcrypt
from fastapi import Response

from config_manager import SessionConfig

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode('utf-8')[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = 10) -> str:
    """Hash a password with a fresh salt"""
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode('utf-8'))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def session_expiry(now: datetime, config: SessionConfig) -> datetime:
    return now + timedelta(hours=config.max_age_hours)


def set_session_cookie(response: Response, token: str, config: SessionConfig) -> None:
    response.set_cookie(
        key=config.cookie_name,
        value=token,
        max_age=config.max_age_hours * 3600,
        httponly=True,
        secure=config.secure,
        samesite=config.same_site,
        path="/",
    )


def clear_session_cookie(response: Response, config: SessionConfig) -> None:
    response.delete_cookie(key=config.cookie_name, path="/")
