"""
tests/conftest.py -- Shared test fixtures for Wayfarer integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for users and tours
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - make_user() / bearer(): seed an account and build an Authorization header
  - client: TestClient on the assembled app (API + web pages), follow_redirects=False

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture instance gets a fresh name so lockout counters and reviews never
leak between tests.

Environment variables must be set before any project import: get_settings()
is cached and api.limiter reads it at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from types import SimpleNamespace

# CRITICAL: Set before any auth/core import so get_settings() auto-generates
# SECRET_KEY in dev mode and the limiter is built disabled.
os.environ.setdefault("DEBUG", "true")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ALLOWED_HOSTS"] = '["testserver"]'

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import Role, User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import AuthConfig, get_settings
from mail.sender import ConsoleEmailSender
from media.images import ImageStore
from payments.checkout import CheckoutGateway
from tours.models import Tour
from tours.store import TourStore

TEST_PASSWORD = "pass1234"
WEBHOOK_SECRET = "whsec_test_secret"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores() -> tuple[UserStore, TourStore]:
    """Create isolated named shared-memory SQLite stores.

    Users and tours live in one database, as they do in production.
    """
    url = f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), TourStore(db_url=url)


def auth_config() -> AuthConfig:
    return AuthConfig.from_settings(get_settings())


def make_user(
    store: UserStore,
    email: str,
    role: Role = Role.USER,
    password: str = TEST_PASSWORD,
    name: str = "Test User",
) -> User:
    user_id = store.create_user(
        User(name=name, email=email, role=role.value, password=hash_password(password, rounds=4))
    )
    return store.get_by_id(user_id)


def bearer(user: User, config: AuthConfig, issued_at: float | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, config, issued_at=issued_at)}"}


def sample_tour(**overrides) -> Tour:
    values = dict(
        name="The Forest Hiker",
        duration=5,
        max_group_size=25,
        difficulty="easy",
        price=397,
        summary="Breathtaking hike through the Canadian Banff National Park",
        image_cover="tour-1-cover.jpg",
        start_location={
            "type": "Point",
            "coordinates": [-115.570154, 51.178456],
            "description": "Banff, CAN",
        },
        start_dates=["2021-04-25T09:00:00", "2021-07-20T09:00:00", "2021-10-05T09:00:00"],
    )
    values.update(overrides)
    return Tour(**values)


def _patch_lifespan(state: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so TestClient routes
    see isolated test DBs, a console mailer, and a temp media root.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.auth_config = state.config
        app.state.user_store = state.users
        app.state.tour_store = state.tours
        app.state.mailer = state.mailer
        app.state.auth_service = AuthService(state.users, state.config, state.mailer)
        app.state.images = state.images
        app.state.checkout = state.checkout
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    users: UserStore
    tours: TourStore
    mailer: ConsoleEmailSender
    images: ImageStore
    checkout: CheckoutGateway
    config: AuthConfig


@pytest.fixture()
def harness(tmp_path) -> Generator[Harness, None, None]:
    """Yield a Harness around a TestClient with fresh stores.

    follow_redirects=False so web tests can assert on redirect locations.
    """
    users, tours = _make_test_stores()
    state = SimpleNamespace(
        users=users,
        tours=tours,
        config=auth_config(),
        mailer=ConsoleEmailSender(),
        images=ImageStore(tmp_path / "img"),
        checkout=CheckoutGateway("sk_test_dummy", WEBHOOK_SECRET),
    )
    app.router.lifespan_context = _patch_lifespan(state)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(
            client=client,
            users=users,
            tours=tours,
            mailer=state.mailer,
            images=state.images,
            checkout=state.checkout,
            config=state.config,
        )

    tours.close()
    users.close()


@pytest.fixture()
def client(harness) -> TestClient:
    return harness.client
