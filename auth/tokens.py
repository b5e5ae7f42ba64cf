"""
auth/tokens.py -- Password hashing, opaque token primitives, and cookie helpers.

Security design decisions:
  Opaque tokens: secrets.token_hex(32) gives 256 bits of entropy. The token
       carries no claims; all meaning lives in the access_tokens row, so
       revocation is a row delete rather than a denylist.

  Tokens at rest: we store HMAC-SHA256(SECRET_KEY, raw_token) so lookup is
       O(1) via the UNIQUE index and a copy of the database does not contain
       usable sessions. bcrypt's intentional slowness is unnecessary for
       256-bit random values.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an identifier exists.

Layer rule: no imports from api/ or directory/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("tenantgate.auth")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input at 72 bytes. The API caps passwords at 128
    characters, and multi-byte input beyond 72 bytes is still accepted.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash. Never raises."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("tenantgate_timing_dummy")


def authenticate_user(store: UserStore, identifier: str, password: str) -> User | None:
    """Resolve identifier (username or email) and check the password.

    Always runs bcrypt whether or not the user exists:
    - Unknown or ambiguous identifier: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the active User on success, None on any failure.
    """
    user = store.get_active_by_identifier(identifier)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        logger.info("Login failed: no single active user for identifier")
        return None
    if not verify_password(password, user.hashed_password):
        logger.info("Login failed: bad password for user_id=%s", user.id)
        return None
    return user


# ---------------------------------------------------------------------------
# Opaque access tokens
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return 64 hex characters from a CSPRNG."""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expires_at: datetime) -> None:
    """Write the access token as an httpOnly cookie that expires with the token.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite: from AUTH_COOKIE_SAMESITE, "lax" by default.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    response.set_cookie(
        _settings.auth_cookie_name,
        value=token,
        httponly=True,
        samesite=_settings.auth_cookie_samesite,
        secure=_settings.secure_cookies,
        domain=_settings.auth_cookie_domain,
        path="/",
        expires=expires_at,
    )


def clear_auth_cookie(response) -> None:
    """Delete the auth cookie. Domain and path must match set_auth_cookie()."""
    response.delete_cookie(
        _settings.auth_cookie_name,
        domain=_settings.auth_cookie_domain,
        path="/",
    )
