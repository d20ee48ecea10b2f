from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
import secrets
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import User, UserSession

PASSWORD_HASH_SCHEME = "pbkdf2_sha256"
PASSWORD_PBKDF2_ITERATIONS = int(os.environ.get("PASSWORD_PBKDF2_ITERATIONS", "390000"))
PASSWORD_SALT_BYTES = int(os.environ.get("PASSWORD_SALT_BYTES", "16"))

SESSION_TOKEN_BYTES = int(os.environ.get("SESSION_TOKEN_BYTES", "32"))
SESSION_TOKEN_PREFIX = os.environ.get("SESSION_TOKEN_PREFIX", "ppe")
SESSION_TTL_HOURS = max(1, int(os.environ.get("SESSION_TTL_HOURS", "72")))
SESSION_TOKEN_PEPPER = os.environ.get("SESSION_TOKEN_PEPPER", "").encode("utf-8")


def _pbkdf2(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def hash_password(password: str) -> str:
    salt = os.urandom(PASSWORD_SALT_BYTES)
    digest = _pbkdf2(password, salt, PASSWORD_PBKDF2_ITERATIONS)
    encoded = [base64.urlsafe_b64encode(part).decode("ascii").rstrip("=") for part in (salt, digest)]
    return "$".join([PASSWORD_HASH_SCHEME, str(PASSWORD_PBKDF2_ITERATIONS), *encoded])


def verify_password(password: str, stored: str | None) -> bool:
    """Team accounts created before hashing (or with a malformed hash) never match."""
    parts = (stored or "").split("$")
    if len(parts) != 4 or parts[0] != PASSWORD_HASH_SCHEME:
        return False
    try:
        salt, expected = (base64.urlsafe_b64decode(part + "=" * (-len(part) % 4)) for part in parts[2:])
        candidate = _pbkdf2(password, salt, int(parts[1]))
    except (ValueError, binascii.Error):
        return False
    return hmac.compare_digest(candidate, expected)


def _token_digest(token: str) -> str:
    return hashlib.sha256(SESSION_TOKEN_PEPPER + token.encode("utf-8")).hexdigest()


def open_session(db: Session, user: User, now: datetime | None = None) -> tuple[str, datetime]:
    """
    Issue a bearer token for `user`. Only its digest is stored; the caller commits.
    Returns the plain token and its expiry.
    """
    token = f"{SESSION_TOKEN_PREFIX}_{secrets.token_urlsafe(SESSION_TOKEN_BYTES)}"
    expires_at = (now or datetime.utcnow()) + timedelta(hours=SESSION_TTL_HOURS)
    db.add(UserSession(user_id=user.id, token_hash=_token_digest(token), expires_at=expires_at))
    return token, expires_at


def find_active_session(db: Session, token: str, now: datetime | None = None) -> UserSession | None:
    return db.execute(
        select(UserSession).where(
            UserSession.token_hash == _token_digest(token),
            UserSession.revoked_at.is_(None),
            UserSession.expires_at > (now or datetime.utcnow()),
        )
    ).scalar_one_or_none()


def revoke_session(session: UserSession, now: datetime | None = None) -> None:
    session.revoked_at = now or datetime.utcnow()
