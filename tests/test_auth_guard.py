"""
tests/test_auth_guard.py -- Integration tests for the Auth Guard over HTTP.

Covers:
  - protect: missing, garbage, expired, orphaned, and stale tokens -> 401
  - bearer header wins over the cookie
  - restrict_to: wrong role -> 403
  - /users/signup, /login, /logout: cookie flags and envelopes
  - lockout through the API
  - forgotPassword / resetPassword / updateMyPassword round trips
  - /me, /updateMe, /deleteMe and the admin user routes
"""

from __future__ import annotations

import re
import time
from dataclasses import replace

import pytest

from auth.models import Role
from auth.tokens import create_access_token
from tests.conftest import TEST_PASSWORD, bearer, make_user

# ---------------------------------------------------------------------------
# protect()
# ---------------------------------------------------------------------------


def test_no_token_is_401(client):
    resp = client.get("/api/v1/users/me")
    assert resp.status_code == 401
    body = resp.json()
    assert body["status"] == "fail"
    assert body["error"]["message"] == "You are not logged in! Please log in to get access."


def test_garbage_token_is_401(client):
    resp = client.get("/api/v1/users/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "invalid_token"


def test_expired_token_is_401(harness):
    user = make_user(harness.users, "ada@example.com")
    config = replace(harness.config, token_expire_seconds=5)
    token = create_access_token(user.id, config, issued_at=time.time() - 60)
    resp = harness.client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "expired_token"


def test_token_for_deleted_user_is_401(harness):
    user = make_user(harness.users, "ada@example.com")
    headers = bearer(user, harness.config)
    harness.users.deactivate(user.id)
    resp = harness.client.get("/api/v1/users/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "The user belonging to this token no longer exists."


def test_token_older_than_password_change_is_401(harness):
    user = make_user(harness.users, "ada@example.com")
    old = bearer(user, harness.config, issued_at=time.time() - 3600)
    harness.users.set_password(user.id, user.password)
    resp = harness.client.get("/api/v1/users/me", headers=old)
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "User recently changed password! Please log in again."


def test_cookie_token_is_accepted(harness):
    user = make_user(harness.users, "ada@example.com")
    token = create_access_token(user.id, harness.config)
    harness.client.cookies.set("jwt", token)
    resp = harness.client.get("/api/v1/users/me")
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["email"] == "ada@example.com"


def test_bearer_header_wins_over_cookie(harness):
    ada = make_user(harness.users, "ada@example.com")
    bob = make_user(harness.users, "bob@example.com", name="Bob")
    harness.client.cookies.set("jwt", create_access_token(ada.id, harness.config))
    resp = harness.client.get("/api/v1/users/me", headers=bearer(bob, harness.config))
    assert resp.json()["data"]["user"]["email"] == "bob@example.com"


def test_me_never_exposes_secrets(harness):
    user = make_user(harness.users, "ada@example.com")
    data = harness.client.get("/api/v1/users/me", headers=bearer(user, harness.config)).json()["data"]["user"]
    assert set(data) == {"id", "name", "email", "photo", "role", "createdAt"}


# ---------------------------------------------------------------------------
# restrict_to()
# ---------------------------------------------------------------------------


def test_user_role_cannot_list_users(harness):
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.get("/api/v1/users", headers=bearer(user, harness.config))
    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "You do not have permission to perform this action."


def test_admin_lists_users_without_hidden_fields(harness):
    admin = make_user(harness.users, "admin@example.com", role=Role.ADMIN, name="Admin")
    make_user(harness.users, "ada@example.com")
    resp = harness.client.get("/api/v1/users?sort=email", headers=bearer(admin, harness.config))
    assert resp.status_code == 200
    body = resp.json()
    assert body["results"] == 2
    assert [u["email"] for u in body["data"]["users"]] == ["ada@example.com", "admin@example.com"]
    assert all("password" not in u and "loginAttempts" not in u for u in body["data"]["users"])


def test_admin_cannot_create_users_directly(harness):
    admin = make_user(harness.users, "admin@example.com", role=Role.ADMIN)
    resp = harness.client.post("/api/v1/users", json={}, headers=bearer(admin, harness.config))
    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == "This route is not defined! Please use /signup instead."


def test_admin_updates_role_and_unfreezes(harness):
    admin = make_user(harness.users, "admin@example.com", role=Role.ADMIN)
    user = make_user(harness.users, "ada@example.com")
    for _ in range(harness.config.max_login_attempts):
        harness.users.increment_login_attempts(user.id)
    resp = harness.client.patch(
        f"/api/v1/users/{user.id}",
        json={"role": "guide", "loginAttempts": 0},
        headers=bearer(admin, harness.config),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["role"] == "guide"
    assert harness.users.get_by_id(user.id).login_attempts == 0


def test_admin_soft_deletes_user(harness):
    admin = make_user(harness.users, "admin@example.com", role=Role.ADMIN)
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.delete(f"/api/v1/users/{user.id}", headers=bearer(admin, harness.config))
    assert resp.status_code == 204
    assert harness.users.get_by_id(user.id) is None
    missing = harness.client.get(f"/api/v1/users/{user.id}", headers=bearer(admin, harness.config))
    assert missing.status_code == 404


# ---------------------------------------------------------------------------
# Signup / login / logout
# ---------------------------------------------------------------------------


def test_signup_sets_cookie_and_ignores_role(harness):
    resp = harness.client.post(
        "/api/v1/users/signup",
        json={
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "password": "pass1234",
            "passwordConfirm": "pass1234",
            "role": "admin",
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "success"
    assert body["token"]
    assert body["data"]["user"]["role"] == "user"
    cookie = resp.headers["set-cookie"]
    assert cookie.startswith("jwt=")
    assert "HttpOnly" in cookie
    assert resp.headers["cache-control"] == "no-store"


def test_signup_rejects_password_over_bcrypt_limit(harness):
    too_long = "a" * 100
    resp = harness.client.post(
        "/api/v1/users/signup",
        json={"name": "Ada", "email": "ada@example.com", "password": too_long, "passwordConfirm": too_long},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Password must be at most 72 bytes long."
    assert harness.users.get_by_email("ada@example.com") is None


def test_signup_duplicate_email_is_409(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post(
        "/api/v1/users/signup",
        json={"name": "Ada", "email": "ada@example.com", "password": "pass1234", "passwordConfirm": "pass1234"},
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "duplicate_field"


def test_login_then_logout(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post("/api/v1/users/login", json={"email": "ada@example.com", "password": TEST_PASSWORD})
    assert resp.status_code == 200
    assert harness.client.get("/api/v1/users/me").status_code == 200

    out = harness.client.get("/api/v1/users/logout")
    assert out.status_code == 200
    assert out.json() == {"status": "success"}
    assert harness.client.get("/api/v1/users/me").status_code == 401


def test_login_missing_fields_is_400(client):
    resp = client.post("/api/v1/users/login", json={"email": "ada@example.com"})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Please provide email and password!"


def test_login_lockout_over_http(harness):
    make_user(harness.users, "ada@example.com")
    for _ in range(harness.config.max_login_attempts):
        resp = harness.client.post("/api/v1/users/login", json={"email": "ada@example.com", "password": "wrong-one"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Incorrect email or password."
    frozen = harness.client.post("/api/v1/users/login", json={"email": "ada@example.com", "password": TEST_PASSWORD})
    assert frozen.status_code == 401
    assert frozen.json()["error"]["message"] == "Maximum login attempts reached. Your account has been frozen!"


# ---------------------------------------------------------------------------
# Password flows
# ---------------------------------------------------------------------------


def test_forgot_and_reset_password(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post("/api/v1/users/forgotPassword", json={"email": "ada@example.com"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Token sent to email!"

    link = re.search(r"http://testserver/api/v1/users/resetPassword/(\w+)", harness.mailer.outbox[-1].text)
    assert link is not None
    reset = harness.client.patch(
        f"/api/v1/users/resetPassword/{link.group(1)}",
        json={"password": "newpass99", "passwordConfirm": "newpass99"},
    )
    assert reset.status_code == 200
    assert reset.json()["token"]

    login = harness.client.post("/api/v1/users/login", json={"email": "ada@example.com", "password": "newpass99"})
    assert login.status_code == 200


def test_reset_with_unknown_token_is_400(client):
    resp = client.patch(
        "/api/v1/users/resetPassword/" + "0" * 64,
        json={"password": "newpass99", "passwordConfirm": "newpass99"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Token is invalid or has expired."


def test_forgot_password_unknown_email_is_404(client):
    resp = client.post("/api/v1/users/forgotPassword", json={"email": "nobody@example.com"})
    assert resp.status_code == 404


def test_update_my_password(harness):
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.patch(
        "/api/v1/users/updateMyPassword",
        json={"passwordCurrent": TEST_PASSWORD, "password": "newpass99", "passwordConfirm": "newpass99"},
        headers=bearer(user, harness.config, issued_at=time.time() - 3600),
    )
    assert resp.status_code == 200
    fresh = {"Authorization": f"Bearer {resp.json()['token']}"}
    assert harness.client.get("/api/v1/users/me", headers=fresh).status_code == 200


def test_reset_and_update_reject_multibyte_password_over_limit(harness):
    user = make_user(harness.users, "ada@example.com")
    too_long = "\u00e9" * 40  # 40 characters, 80 bytes
    resp = harness.client.patch(
        "/api/v1/users/updateMyPassword",
        json={"passwordCurrent": TEST_PASSWORD, "password": too_long, "passwordConfirm": too_long},
        headers=bearer(user, harness.config),
    )
    assert resp.status_code == 400

    harness.client.post("/api/v1/users/forgotPassword", json={"email": "ada@example.com"})
    raw = re.search(r"resetPassword/(\w+)", harness.mailer.outbox[-1].text).group(1)
    reset = harness.client.patch(
        f"/api/v1/users/resetPassword/{raw}", json={"password": too_long, "passwordConfirm": too_long}
    )
    assert reset.status_code == 400


def test_login_with_overlong_password_is_plain_401(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post("/api/v1/users/login", json={"email": "ada@example.com", "password": "a" * 100})
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Incorrect email or password."


def test_update_my_password_wrong_current(harness):
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.patch(
        "/api/v1/users/updateMyPassword",
        json={"passwordCurrent": "nope-nope", "password": "newpass99", "passwordConfirm": "newpass99"},
        headers=bearer(user, harness.config),
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Your current password is wrong."


# ---------------------------------------------------------------------------
# Self service
# ---------------------------------------------------------------------------


def test_update_me_changes_name_and_email(harness):
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.patch(
        "/api/v1/users/updateMe",
        json={"name": "Ada King", "email": "ADA.KING@example.com", "role": "admin"},
        headers=bearer(user, harness.config),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]["user"]
    assert data["name"] == "Ada King"
    assert data["email"] == "ada.king@example.com"
    assert data["role"] == "user"


@pytest.mark.parametrize("email", ["x", "ada@", "ada at example.com"])
def test_update_me_rejects_malformed_email(harness, email):
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.patch("/api/v1/users/updateMe", json={"email": email}, headers=bearer(user, harness.config))
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Please provide a valid email!"
    assert harness.users.get_by_id(user.id).email == "ada@example.com"


def test_update_me_rejects_password(harness):
    user = make_user(harness.users, "ada@example.com")
    resp = harness.client.patch(
        "/api/v1/users/updateMe",
        json={"password": "newpass99", "passwordConfirm": "newpass99"},
        headers=bearer(user, harness.config),
    )
    assert resp.status_code == 400
    assert "updateMyPassword" in resp.json()["error"]["message"]


def test_delete_me_deactivates(harness):
    user = make_user(harness.users, "ada@example.com")
    headers = bearer(user, harness.config)
    assert harness.client.delete("/api/v1/users/deleteMe", headers=headers).status_code == 204
    assert harness.client.get("/api/v1/users/me", headers=headers).status_code == 401
