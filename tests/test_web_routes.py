"""
tests/test_web_routes.py -- Integration tests for the server-rendered pages.

Covers:
  - overview and tour detail render, unknown slug -> 404 page
  - protected pages redirect to /login?next=<path>
  - login form: success sets cookie and honors a safe next, failures map
    to whitelisted messages, open redirects are refused [C2]
  - signup form, logout, account update, my-tours alert banner
  - unknown non-API paths get the HTML error page
  - a garbage, expired, orphaned or stale cookie renders the page anonymously
"""

from __future__ import annotations

import time
from dataclasses import replace

import pytest

from auth.tokens import create_access_token
from tests.conftest import TEST_PASSWORD, make_user, sample_tour
from tours.models import Booking
from web.routes import _safe_next


def _log_in(harness, user):
    harness.client.cookies.set("jwt", create_access_token(user.id, harness.config))


# ---------------------------------------------------------------------------
# Public pages
# ---------------------------------------------------------------------------


def test_overview_lists_tours(harness):
    harness.tours.create_tour(sample_tour())
    resp = harness.client.get("/")
    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert "The Forest Hiker" in resp.text
    assert 'href="/tour/the-forest-hiker"' in resp.text


def test_tour_page(harness):
    harness.tours.create_tour(sample_tour())
    resp = harness.client.get("/tour/the-forest-hiker")
    assert resp.status_code == 200
    assert "Log in to book tour" in resp.text


def test_tour_page_offers_booking_when_logged_in(harness):
    harness.tours.create_tour(sample_tour())
    _log_in(harness, make_user(harness.users, "ada@example.com"))
    assert "Book tour now!" in harness.client.get("/tour/the-forest-hiker").text


def test_unknown_tour_slug_is_404_page(harness):
    resp = harness.client.get("/tour/no-such-tour")
    assert resp.status_code == 404
    assert "There is no tour with that name." in resp.text


def test_unknown_page_renders_html_error(harness):
    resp = harness.client.get("/nowhere")
    assert resp.status_code == 404
    assert "text/html" in resp.headers["content-type"]
    assert "Can&#39;t find /nowhere on this server!" in resp.text


def test_unknown_api_path_stays_json(harness):
    resp = harness.client.get("/api/v1/nowhere")
    assert resp.status_code == 404
    assert resp.json()["error"]["message"] == "Can't find /api/v1/nowhere on this server!"


def _anonymous_cookie_cases(harness):
    ada = make_user(harness.users, "ada@example.com")
    ghost = make_user(harness.users, "ghost@example.com", name="Ghost")
    harness.users.deactivate(ghost.id)
    short_lived = replace(harness.config, token_expire_seconds=5)
    stale = create_access_token(ada.id, harness.config, issued_at=time.time() - 3600)
    harness.users.set_password(ada.id, ada.password)
    return {
        "garbage": "not-a-jwt",
        "expired": create_access_token(ada.id, short_lived, issued_at=time.time() - 60),
        "orphaned": create_access_token(ghost.id, harness.config),
        "stale": stale,
    }


@pytest.mark.parametrize("case", ["garbage", "expired", "orphaned", "stale"])
def test_bad_cookie_renders_anonymously(harness, case):
    harness.tours.create_tour(sample_tour())
    token = _anonymous_cookie_cases(harness)[case]
    harness.client.cookies.set("jwt", token)
    resp = harness.client.get("/")
    assert resp.status_code == 200
    assert 'href="/login">Log in</a>' in resp.text
    assert "Log out" not in resp.text


# ---------------------------------------------------------------------------
# Protected pages
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("path", ["/me", "/my-tours"])
def test_protected_pages_redirect_to_login(harness, path):
    resp = harness.client.get(path)
    assert resp.status_code == 302
    assert resp.headers["location"] == f"/login?next={path}"


def test_account_page(harness):
    _log_in(harness, make_user(harness.users, "ada@example.com", name="Ada Lovelace"))
    resp = harness.client.get("/me")
    assert resp.status_code == 200
    assert 'value="ada@example.com"' in resp.text


def test_submit_user_data_rejects_malformed_email(harness):
    user = make_user(harness.users, "ada@example.com", name="Ada Lovelace")
    _log_in(harness, user)
    resp = harness.client.post("/submit-user-data", data={"name": "Ada", "email": "x"})
    assert resp.status_code == 400
    assert "Please provide a valid email!" in resp.text
    assert harness.users.get_by_id(user.id).email == "ada@example.com"


def test_submit_user_data(harness):
    user = make_user(harness.users, "ada@example.com", name="Ada Lovelace")
    _log_in(harness, user)
    resp = harness.client.post("/submit-user-data", data={"name": "Ada King", "email": "ada@example.com"})
    assert resp.status_code == 200
    assert "Your data was updated." in resp.text
    assert harness.users.get_by_id(user.id).name == "Ada King"


def test_my_tours_with_booking_alert(harness):
    user = make_user(harness.users, "ada@example.com")
    tour_id = harness.tours.create_tour(sample_tour())
    harness.tours.create_tour(sample_tour(name="The Sea Explorer"))
    harness.tours.create_booking(Booking(tour_id=tour_id, user_id=user.id, price=397))
    _log_in(harness, user)

    resp = harness.client.get("/my-tours?alert=booking")
    assert resp.status_code == 200
    assert "Your booking was successful!" in resp.text
    assert "The Forest Hiker" in resp.text
    assert "The Sea Explorer" not in resp.text


def test_unknown_alert_is_not_reflected(harness):
    _log_in(harness, make_user(harness.users, "ada@example.com"))
    resp = harness.client.get("/my-tours?alert=<script>alert(1)</script>")
    assert "<script>alert(1)</script>" not in resp.text
    assert 'class="alert' not in resp.text


# ---------------------------------------------------------------------------
# Login / signup / logout
# ---------------------------------------------------------------------------


def test_login_form_sets_cookie_and_follows_next(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post("/login?next=/my-tours", data={"email": "ada@example.com", "password": TEST_PASSWORD})
    assert resp.status_code == 302
    assert resp.headers["location"] == "/my-tours"
    assert resp.headers["set-cookie"].startswith("jwt=")


def test_login_form_refuses_open_redirect(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post(
        "/login?next=//evil.example.com", data={"email": "ada@example.com", "password": TEST_PASSWORD}
    )
    assert resp.headers["location"] == "/"


def test_login_form_bad_password(harness):
    make_user(harness.users, "ada@example.com")
    resp = harness.client.post("/login", data={"email": "ada@example.com", "password": "wrong-one"})
    assert resp.headers["location"] == "/login?error=bad_credentials"
    page = harness.client.get("/login?error=bad_credentials")
    assert "Incorrect email or password." in page.text


def test_login_error_param_is_whitelisted(harness):
    page = harness.client.get("/login?error=<b>owned</b>")
    assert "<b>owned</b>" not in page.text


def test_logged_in_user_skips_login_page(harness):
    _log_in(harness, make_user(harness.users, "ada@example.com"))
    resp = harness.client.get("/login")
    assert resp.status_code == 302
    assert resp.headers["location"] == "/"


def test_signup_form(harness):
    resp = harness.client.post(
        "/signup",
        data={"name": "Ada", "email": "ada@example.com", "password": "pass1234", "password_confirm": "pass1234"},
    )
    assert resp.status_code == 302
    assert resp.headers["set-cookie"].startswith("jwt=")
    assert harness.users.get_by_email("ada@example.com") is not None
    assert harness.mailer.outbox[-1].recipient == "ada@example.com"


def test_signup_form_shows_errors(harness):
    resp = harness.client.post(
        "/signup",
        data={"name": "Ada", "email": "ada@example.com", "password": "pass1234", "password_confirm": "nope1234"},
    )
    assert resp.status_code == 400
    assert "Passwords are not the same!" in resp.text
    assert 'value="ada@example.com"' in resp.text


def test_logout_clears_cookie(harness):
    _log_in(harness, make_user(harness.users, "ada@example.com"))
    resp = harness.client.post("/logout")
    assert resp.status_code == 302
    assert resp.headers["location"] == "/"
    assert 'jwt=""' in resp.headers["set-cookie"] or "jwt=;" in resp.headers["set-cookie"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("/me", "/me"),
        ("//evil.com", "/"),
        ("https://evil.com", "/"),
        (None, "/"),
        ("", "/"),
    ],
)
def test_safe_next(raw, expected):
    assert _safe_next(raw) == expected
