"""
auth/service.py -- Account flows: signup, login throttling, password changes.

AuthService holds the pieces every flow needs (store, frozen AuthConfig,
email sender) and returns (User, token) pairs. Routes decide how to deliver
the token (cookie + JSON for the API, cookie + redirect for the web UI).

Login throttling:
  The failure counter is read first. At or above max_login_attempts the
  account is frozen: the counter is bumped again and the password is not
  even checked. Time never unfreezes an account; an admin resets the
  counter. A wrong password bumps the counter, a right one clears it.
  Increments are atomic UPDATEs, but the read-then-decide step is not one
  transaction, so concurrent attempts may under-count (known race).

Password reset:
  Only the SHA-256 of the mailed token is stored. If the email cannot be
  sent the stored hash and expiry are cleared before the error propagates.

Layer rule: no imports from api/, web/, tours/, or payments/.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from starlette.concurrency import run_in_threadpool

from auth.models import EMAIL_PATTERN, Role, User
from auth.store import UserStore, normalize_email
from auth.tokens import (
    MAX_PASSWORD_BYTES,
    create_access_token,
    dummy_hash,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from core.config import AuthConfig
from core.errors import (
    AccountFrozen,
    DownstreamUnavailable,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NotFound,
    ValidationFailure,
)

logger = logging.getLogger("wayfarer.auth")

MIN_PASSWORD_LENGTH = 8
MAX_EMAIL_LENGTH = 255


def validate_new_password(password: str, password_confirm: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailure(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")
    if password != password_confirm:
        raise ValidationFailure("Passwords are not the same!")


def validate_email(email: str) -> str:
    """Normalized email, or ValidationFailure when it is not shaped like one."""
    normalized = normalize_email(email)
    if len(normalized) > MAX_EMAIL_LENGTH or not re.match(EMAIL_PATTERN, normalized):
        raise ValidationFailure("Please provide a valid email!")
    return normalized


class AuthService:
    def __init__(self, store: UserStore, config: AuthConfig, mailer) -> None:
        self.store = store
        self.config = config
        self.mailer = mailer

    def issue_token(self, user: User) -> str:
        return create_access_token(user.id, self.config)

    def _hash(self, plain: str) -> str:
        return hash_password(plain, rounds=self.config.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    async def signup(
        self,
        name: str,
        email: str,
        password: str,
        password_confirm: str,
        welcome_url: str,
    ) -> tuple[User, str]:
        """Create a role=user account, send the welcome email, issue a token.

        The role is never taken from the client. A welcome email that fails
        to send is logged; the account stays.

        Raises ValidationFailure for bad input and IntegrityError for a
        duplicate email.
        """
        if not name.strip() or not email.strip():
            raise ValidationFailure("Please provide your name and email.")
        email = validate_email(email)
        validate_new_password(password, password_confirm)
        hashed = await run_in_threadpool(self._hash, password)
        user_id = self.store.create_user(
            User(name=name, email=email, role=Role.USER.value, password=hashed)
        )
        user = self.store.get_by_id(user_id)
        try:
            await self.mailer.send(user.email, "welcome", {"first_name": user.name.split(" ")[0], "url": welcome_url})
        except DownstreamUnavailable:
            logger.warning("Welcome email to %s could not be sent", user.email)
        logger.info("New account created user_id=%s", user.id)
        return user, self.issue_token(user)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> tuple[User, str]:
        """Check credentials with lockout. Returns (user, token).

        Raises ValidationFailure, InvalidCredentials, or AccountFrozen.
        """
        if not email or not password:
            raise ValidationFailure("Please provide email and password!")
        user = self.store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password, dummy_hash(self.config.bcrypt_rounds))
            raise InvalidCredentials()
        if user.login_attempts >= self.config.max_login_attempts:
            self.store.increment_login_attempts(user.id)
            logger.warning("Login attempt on frozen account user_id=%s", user.id)
            raise AccountFrozen()
        if not verify_password(password, user.password or ""):
            self.store.increment_login_attempts(user.id)
            logger.info("Failed login for %s (attempt %d)", user.email, user.login_attempts + 1)
            raise InvalidCredentials()
        self.store.reset_login_attempts(user.id)
        user.login_attempts = 0
        return user, self.issue_token(user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str, reset_url: Callable[[str], str]) -> None:
        """Store a reset-token hash and mail the raw token.

        reset_url builds the link for a raw token; the route knows the host.
        Raises NotFound for an unknown email and DownstreamUnavailable when
        the email fails (after rolling the token back).
        """
        user = self.store.get_by_email(email or "")
        if user is None:
            raise NotFound("There is no user with that email address.")
        raw_token, token_hash = generate_reset_token()
        expires_at = time.time() + self.config.password_reset_expire_minutes * 60
        self.store.set_reset_token(user.id, token_hash, expires_at)
        try:
            await self.mailer.send(
                user.email,
                "password_reset",
                {
                    "first_name": user.name.split(" ")[0],
                    "url": reset_url(raw_token),
                    "expires_minutes": self.config.password_reset_expire_minutes,
                },
            )
        except DownstreamUnavailable:
            self.store.clear_reset_token(user.id)
            logger.error("Password reset email to %s failed; reset token rolled back", user.email)
            raise DownstreamUnavailable("There was an error sending the email. Try again later!") from None

    def reset_password(self, raw_token: str, password: str, password_confirm: str) -> tuple[User, str]:
        """Redeem a reset token. Raises InvalidOrExpiredToken or ValidationFailure."""
        user = self.store.get_by_reset_token(hash_reset_token(raw_token))
        if user is None:
            raise InvalidOrExpiredToken()
        validate_new_password(password, password_confirm)
        self.store.set_password(user.id, self._hash(password))
        user = self.store.get_by_id(user.id)
        logger.info("Password reset completed for user_id=%s", user.id)
        return user, self.issue_token(user)

    # ------------------------------------------------------------------
    # Password update (authenticated)
    # ------------------------------------------------------------------

    def update_password(
        self,
        user: User,
        password_current: str,
        password: str,
        password_confirm: str,
    ) -> tuple[User, str]:
        """Change the password of a logged-in user and issue a fresh token."""
        if not verify_password(password_current or "", user.password or ""):
            raise InvalidCredentials("Your current password is wrong.")
        validate_new_password(password, password_confirm)
        self.store.set_password(user.id, self._hash(password))
        user = self.store.get_by_id(user.id)
        return user, self.issue_token(user)
