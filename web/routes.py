"""
web/routes.py -- Jinja2 template routes for the Wayfarer site.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores, same AuthService) but return HTML and redirects instead
of JSON.

Every page learns who is looking through is_logged_in(), exposed to the
templates as a Jinja2 global. Protected pages redirect anonymous visitors to
/login?next=<path>.

Routes:
  GET  /                  -- overview of all tours
  GET  /tour/{slug}       -- tour detail with guides, reviews, Book button
  GET  /login             -- login form
  POST /login             -- handle password login
  GET  /signup            -- signup form
  POST /signup            -- create account, log in, redirect
  POST /logout            -- clear cookie, redirect /
  GET  /me                -- account page (auth required)
  POST /submit-user-data  -- name/email form on the account page (auth required)
  GET  /my-tours          -- tours the user has booked (auth required)
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError

from auth.dependencies import is_logged_in
from auth.service import AuthService, validate_email
from auth.store import UserStore
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.errors import AccountFrozen, InvalidCredentials, ValidationFailure
from tours.store import TourStore

logger = logging.getLogger("wayfarer.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls is_logged_in(request) itself, so handlers never have to
# pass the current user into the template context.
templates.env.globals["is_logged_in"] = is_logged_in
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Incorrect email or password.",
    "account_frozen": "Maximum login attempts reached. Your account has been frozen!",
    "missing_fields": "Please provide email and password!",
}

# Same whitelist idea for ?alert= on /my-tours.
_ALERTS: dict[str, str] = {
    "booking": "Your booking was successful! Please check your email for a confirmation. "
    "If your booking doesn't show up here immediately, please come back later.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    /login?next=https://attacker.com and /login?next=//attacker.com would
    both leave the site after login, so only paths that start with a single
    "/" are accepted.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Redirect to /login when nobody is logged in, else None.

    On success the user is available as request.state.user:
        if redirect := _require_auth(request):
            return redirect
    """
    if is_logged_in(request) is None:
        return RedirectResponse(f"/login?next={request.url.path}", status_code=302)
    return None


def render_error(request: Request, status_code: int, message: str) -> HTMLResponse:
    """Error page used for every non-API failure (installed by asgi.py)."""
    title = "Page not found" if status_code == 404 else "Something went wrong!"
    return templates.TemplateResponse(
        request,
        "error.html",
        {"title": title, "message": message},
        status_code=status_code,
    )


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def overview(request: Request) -> HTMLResponse:
    tour_store: TourStore = request.app.state.tour_store
    return templates.TemplateResponse(
        request,
        "overview.html",
        {"title": "All Tours", "tours": tour_store.list_tours()},
    )


@router.get("/tour/{slug}", response_class=HTMLResponse)
def tour_detail(request: Request, slug: str) -> HTMLResponse:
    tour_store: TourStore = request.app.state.tour_store
    user_store: UserStore = request.app.state.user_store
    tour = tour_store.get_tour_by_slug(slug)
    if tour is None:
        return render_error(request, 404, "There is no tour with that name.")
    reviews = tour_store.reviews_for_tour(tour.id)
    people = user_store.get_by_ids(set(tour.guides) | {r.user_id for r in reviews})
    return templates.TemplateResponse(
        request,
        "tour.html",
        {
            "title": f"{tour.name} Tour",
            "tour": tour,
            "guides": [people[g] for g in tour.guides if g in people],
            "reviews": [(r, people.get(r.user_id)) for r in reviews],
        },
    )


# ---------------------------------------------------------------------------
# Login / signup / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page. Already-authenticated users go to /."""
    if is_logged_in(request) is not None:
        return RedirectResponse("/", status_code=302)
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return templates.TemplateResponse(
        request,
        "login.html",
        {"title": "Log into your account", "error_msg": error_msg},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
) -> RedirectResponse:
    """Handle the login form. Failures come back as whitelisted error codes."""
    service: AuthService = request.app.state.auth_service
    try:
        _, token = service.login(email, password)
    except AccountFrozen:
        return RedirectResponse("/login?error=account_frozen", status_code=302)
    except InvalidCredentials:
        return RedirectResponse("/login?error=bad_credentials", status_code=302)
    except ValidationFailure:
        return RedirectResponse("/login?error=missing_fields", status_code=302)

    next_url = _safe_next(request.query_params.get("next"))  # [C2]
    resp = RedirectResponse(next_url, status_code=302)
    set_auth_cookie(resp, token, request.app.state.auth_config)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> HTMLResponse:
    if is_logged_in(request) is not None:
        return RedirectResponse("/", status_code=302)
    return templates.TemplateResponse(request, "signup.html", {"title": "Create your account"})


@router.post("/signup", response_class=HTMLResponse)
async def signup_post(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    password_confirm: str = Form(""),
):
    service: AuthService = request.app.state.auth_service
    form = {"name": name, "email": email}
    try:
        _, token = await service.signup(
            name, email, password, password_confirm, welcome_url=f"{request.base_url}me"
        )
    except ValidationFailure as exc:
        error_msg = exc.message
    except IntegrityError:
        error_msg = "An account with that email already exists."
    else:
        resp = RedirectResponse("/", status_code=302)
        set_auth_cookie(resp, token, request.app.state.auth_config)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return templates.TemplateResponse(
        request,
        "signup.html",
        {"title": "Create your account", "error_msg": error_msg, "form": form},
        status_code=400,
    )


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the jwt cookie and go back to the overview."""
    resp = RedirectResponse("/", status_code=302)
    clear_auth_cookie(resp, request.app.state.auth_config)
    return resp


# ---------------------------------------------------------------------------
# Account pages
# ---------------------------------------------------------------------------


@router.get("/me", response_class=HTMLResponse)
def account(request: Request) -> HTMLResponse:
    if redirect := _require_auth(request):
        return redirect
    return templates.TemplateResponse(request, "account.html", {"title": "Your account"})


@router.post("/submit-user-data", response_class=HTMLResponse)
def submit_user_data(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
) -> HTMLResponse:
    """Name/email form on the account page. Blank fields are left unchanged."""
    if redirect := _require_auth(request):
        return redirect
    user_store: UserStore = request.app.state.user_store
    updates = {k: v.strip() for k, v in (("name", name), ("email", email)) if v.strip()}
    try:
        if "email" in updates:
            updates["email"] = validate_email(updates["email"])
        user_store.update_user(request.state.user.id, **updates)
    except ValidationFailure as exc:
        error_msg = exc.message
    except IntegrityError:
        error_msg = "That email is already in use."
    else:
        # The refreshed user is what layout.html and account.html will show.
        request.state.user = user_store.get_by_id(request.state.user.id)
        return templates.TemplateResponse(
            request,
            "account.html",
            {"title": "Your account", "success_msg": "Your data was updated."},
        )
    return templates.TemplateResponse(
        request,
        "account.html",
        {"title": "Your account", "error_msg": error_msg},
        status_code=400,
    )


@router.get("/my-tours", response_class=HTMLResponse)
def my_tours(request: Request) -> HTMLResponse:
    if redirect := _require_auth(request):
        return redirect
    tour_store: TourStore = request.app.state.tour_store
    alert = _ALERTS.get(request.query_params.get("alert", ""), None)
    return templates.TemplateResponse(
        request,
        "overview.html",
        {
            "title": "My Tours",
            "tours": tour_store.booked_tours(request.state.user.id),
            "alert": alert,
        },
    )
