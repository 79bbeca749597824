"""
auth/dependencies.py -- FastAPI Depends() helpers: the request guard.

Per request the guard ends in one of three states:
  authenticated -- protect() resolved a User and stored it on request.state.user
  rejected      -- protect() or restrict_to() raised an AppError subclass
  anonymous     -- is_logged_in() returned None

Token sources, in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "jwt" cookie -- set by login/signup for browsers.

is_logged_in() reads the cookie only and never raises. It is for pages that
render differently for visitors and members, never for access control.

restrict_to(*roles) depends on protect(), so role checks always run after
the identity is resolved.

Layer rule: no imports from web/, tours/, or payments/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import decode_access_token
from core.config import AuthConfig
from core.errors import AppError, Forbidden, StalePassword, Unauthenticated, UnknownSubject

logger = logging.getLogger("wayfarer.auth")


def _bearer_or_cookie(request: Request, config: AuthConfig) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(config.cookie_name) or None


def resolve_user(store: UserStore, token: str, config: AuthConfig) -> User:
    """Verify a token and return the active user it names.

    Raises InvalidToken, ExpiredToken, UnknownSubject, or StalePassword.
    """
    payload = decode_access_token(token, config)
    user = store.get_by_id(payload["user_id"])
    if user is None:
        raise UnknownSubject()
    if user.changed_password_after(payload["iat"]):
        raise StalePassword()
    return user


def protect(request: Request) -> User:
    """Require authentication. Raises a 401-class AppError on any failure.

    Use as a FastAPI dependency:
        @router.get("/me")
        def me(user: User = Depends(protect)): ...
    """
    config: AuthConfig = request.app.state.auth_config
    token = _bearer_or_cookie(request, config)
    if not token:
        raise Unauthenticated()
    user = resolve_user(request.app.state.user_store, token, config)
    request.state.user = user
    return user


def is_logged_in(request: Request) -> User | None:
    """Soft variant of protect(): cookie only, returns None on any failure."""
    config: AuthConfig = request.app.state.auth_config
    token = request.cookies.get(config.cookie_name)
    if not token:
        return None
    try:
        user = resolve_user(request.app.state.user_store, token, config)
    except AppError:
        return None
    except SQLAlchemyError:
        logger.warning("User lookup failed while rendering for an anonymous visitor", exc_info=True)
        return None
    request.state.user = user
    return user


def restrict_to(*roles: Role | str) -> Callable[..., User]:
    """Dependency factory: allow only users whose role is in roles.

        @router.delete("/tours/{tour_id}", dependencies=[Depends(restrict_to("admin", "lead-guide"))])
    """
    allowed = frozenset(Role(r).value for r in roles)

    def dependency(user: User = Depends(protect)) -> User:
        if user.role not in allowed:
            raise Forbidden()
        return user

    return dependency
