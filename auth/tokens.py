"""
auth/tokens.py -- JWT, password hashing, reset tokens, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id), iat and exp.
       iat is compared against the user's password_changed_at so a password
       change retroactively invalidates every token issued before it.
       decode_access_token() raises InvalidToken / ExpiredToken; the guard
       in auth/dependencies.py decides whether that rejects or falls through.

  Passwords: bcrypt used directly. The dummy hash enables timing
       equalization in AuthService.login() so response time does not reveal
       whether an email is registered [C1].

  Reset tokens: secrets.token_hex(32) is mailed to the user; only its
       SHA-256 is stored. A leaked database row cannot be redeemed.

  Config: every function takes the frozen AuthConfig explicitly. Nothing in
       this module reads settings on its own.

Layer rule: no imports from api/, web/, tours/, or payments/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from functools import lru_cache

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import AuthConfig
from core.errors import ExpiredToken, InvalidToken

logger = logging.getLogger("wayfarer.auth")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------

# bcrypt input limit; longer inputs raise ValueError in bcrypt >= 5.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only accepts MAX_PASSWORD_BYTES of input; validate_new_password()
    in auth/service.py rejects longer passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage; treat as a mismatch.
        logger.warning("Stored password hash is malformed")
        return False


@lru_cache(maxsize=4)
def dummy_hash(rounds: int) -> str:
    """Hash compared against when the email is unknown [C1].

    Cached per cost factor so the dummy check costs the same as a real one.
    """
    return hash_password("wayfarer_timing_dummy", rounds=rounds)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, config: AuthConfig, issued_at: float | None = None) -> str:
    """Encode a signed JWT for user_id, valid for config.token_expire_seconds."""
    iat = int(issued_at if issued_at is not None else time.time())
    payload = {
        "sub": str(user_id),
        "iat": iat,
        "exp": iat + config.token_expire_seconds,
    }
    return jwt.encode(payload, config.secret_key, algorithm=config.algorithm)


def decode_access_token(token: str, config: AuthConfig) -> dict:
    """Verify signature and expiry. Returns the payload with an int user id.

    Raises:
        ExpiredToken:  signature valid but exp has passed.
        InvalidToken:  bad signature, malformed token, or missing claims.
    """
    try:
        payload = jwt.decode(token, config.secret_key, algorithms=[config.algorithm])
    except ExpiredSignatureError as exc:
        raise ExpiredToken() from exc
    except JWTError as exc:
        raise InvalidToken() from exc
    try:
        payload["user_id"] = int(payload["sub"])
        payload["iat"] = int(payload["iat"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidToken() from exc
    return payload


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def hash_reset_token(raw_token: str) -> str:
    """SHA-256 hex of a raw reset token. Deterministic so lookup is O(1)."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_reset_token() -> tuple[str, str]:
    """Return (raw_token, token_hash). Only the hash is ever persisted."""
    raw = secrets.token_hex(32)
    return raw, hash_reset_token(raw)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, config: AuthConfig) -> None:
    """Write the JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS in production.
    """
    response.set_cookie(
        config.cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=config.secure_cookies,
        max_age=config.cookie_max_age,
    )


def clear_auth_cookie(response, config: AuthConfig) -> None:
    response.delete_cookie(config.cookie_name, httponly=True, samesite="lax", secure=config.secure_cookies)
