"""
api/routes/v1/users.py -- Account and user-management REST endpoints.

Routes:
  POST   /api/v1/users/signup                -- create account; sets jwt cookie
  POST   /api/v1/users/login                 -- password login with lockout
  GET    /api/v1/users/logout                -- clears the jwt cookie
  POST   /api/v1/users/forgotPassword        -- mail a reset token
  PATCH  /api/v1/users/resetPassword/{token} -- redeem a reset token
  PATCH  /api/v1/users/updateMyPassword      -- change password (auth)
  GET    /api/v1/users/me                    -- current user (auth)
  PATCH  /api/v1/users/updateMe              -- name / email / photo (auth)
  DELETE /api/v1/users/deleteMe              -- soft delete own account (auth)
  GET    /api/v1/users                       -- list users (admin)
  POST   /api/v1/users                       -- not supported, use /signup
  GET    /api/v1/users/{id}                  -- one user (admin)
  PATCH  /api/v1/users/{id}                  -- edit user, never password (admin)
  DELETE /api/v1/users/{id}                  -- soft delete (admin)

Security:
  [H2] POST /login has its own 10/minute limit on top of the shared API limit.
  [M5] Cache-Control: no-store on every response that carries a token.
  Signup never accepts a role from the client.
  Fixed paths (/me, /updateMe, ...) are registered before /{user_id}.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from api.deps import auth_config, auth_service, listing_params, user_store
from api.limiter import api_limit, login_limit
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UpdatePasswordRequest,
    UserAdminUpdate,
    UserOut,
    dump,
    success,
)
from auth.dependencies import protect, restrict_to
from auth.models import Role, User
from auth.service import AuthService, validate_email
from auth.store import UserStore
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import AuthConfig
from core.errors import NotFound, ValidationFailure

router = APIRouter(prefix="/users")

_admin_only = restrict_to(Role.ADMIN)


def _send_token(user: User, token: str, config: AuthConfig, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=success(token=token, data={"user": dump(UserOut.from_user(user))}),
    )
    set_auth_cookie(resp, token, config)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@api_limit
@router.post("/signup", status_code=201)
async def signup(
    request: Request,
    body: SignupRequest,
    service: AuthService = Depends(auth_service),
    config: AuthConfig = Depends(auth_config),
) -> JSONResponse:
    user, token = await service.signup(
        body.name,
        body.email,
        body.password,
        body.password_confirm,
        welcome_url=f"{request.base_url}me",
    )
    return _send_token(user, token, config, status_code=201)


@login_limit  # [H2] must be ABOVE @router to preserve FastAPI introspection
@api_limit
@router.post("/login")
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(auth_service),
    config: AuthConfig = Depends(auth_config),
) -> JSONResponse:
    """Email/password login. Lockout and counter handling live in AuthService.login()."""
    user, token = service.login(body.email, body.password)
    return _send_token(user, token, config)


@router.get("/logout")
async def logout(config: AuthConfig = Depends(auth_config)) -> JSONResponse:
    """Clear the jwt cookie."""
    resp = JSONResponse(content=success())
    clear_auth_cookie(resp, config)
    return resp


@api_limit
@router.post("/forgotPassword")
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(auth_service),
) -> dict:
    base = str(request.base_url)
    await service.forgot_password(body.email, lambda raw: f"{base}api/v1/users/resetPassword/{raw}")
    return success(message="Token sent to email!")


@api_limit
@router.patch("/resetPassword/{token}")
def reset_password(
    request: Request,
    token: str,
    body: ResetPasswordRequest,
    service: AuthService = Depends(auth_service),
    config: AuthConfig = Depends(auth_config),
) -> JSONResponse:
    user, jwt_token = service.reset_password(token, body.password, body.password_confirm)
    return _send_token(user, jwt_token, config)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@api_limit
@router.patch("/updateMyPassword")
def update_my_password(
    request: Request,
    body: UpdatePasswordRequest,
    current_user: User = Depends(protect),
    service: AuthService = Depends(auth_service),
    config: AuthConfig = Depends(auth_config),
) -> JSONResponse:
    user, token = service.update_password(
        current_user, body.password_current, body.password, body.password_confirm
    )
    return _send_token(user, token, config)


@api_limit
@router.get("/me")
def get_me(request: Request, current_user: User = Depends(protect)) -> dict:
    return success(data={"user": dump(UserOut.from_user(current_user))})


async def _read_body(request: Request) -> dict:
    """JSON or form body as a plain dict (forms may carry an UploadFile)."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        return dict(form.items())
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise ValidationFailure("Malformed JSON body.") from None
    if not isinstance(data, dict):
        raise ValidationFailure("Request body must be a JSON object.")
    return data


@api_limit
@router.patch("/updateMe")
async def update_me(
    request: Request,
    current_user: User = Depends(protect),
    store: UserStore = Depends(user_store),
) -> dict:
    """Update name, email, and photo. Passwords go through /updateMyPassword."""
    data = await _read_body(request)
    if "password" in data or "passwordConfirm" in data:
        raise ValidationFailure("This route is not for password updates. Please use /updateMyPassword.")
    updates = {}
    for key in ("name", "email"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            updates[key] = value.strip()
    if "email" in updates:
        updates["email"] = validate_email(updates["email"])
    photo = data.get("photo")
    if isinstance(photo, UploadFile):
        content = await photo.read()
        updates["photo"] = await run_in_threadpool(
            request.app.state.images.save_user_photo, current_user.id, content, photo.content_type
        )
    store.update_user(current_user.id, **updates)
    user = store.get_by_id(current_user.id)
    return success(data={"user": dump(UserOut.from_user(user))})


@api_limit
@router.delete("/deleteMe", status_code=204)
def delete_me(
    request: Request,
    current_user: User = Depends(protect),
    store: UserStore = Depends(user_store),
) -> Response:
    store.deactivate(current_user.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@api_limit
@router.get("", dependencies=[Depends(_admin_only)])
def list_users(
    request: Request,
    params: dict = Depends(listing_params),
    store: UserStore = Depends(user_store),
) -> dict:
    docs = store.find(params)
    return success(results=len(docs), data={"users": docs})


@api_limit
@router.post("", dependencies=[Depends(_admin_only)])
def create_user(request: Request) -> None:
    raise HTTPException(
        status_code=500,
        detail={"code": "not_defined", "message": "This route is not defined! Please use /signup instead."},
    )


@api_limit
@router.get("/{user_id}", dependencies=[Depends(_admin_only)])
def get_user(request: Request, user_id: int, store: UserStore = Depends(user_store)) -> dict:
    user = store.get_by_id(user_id)
    if user is None:
        raise NotFound()
    return success(data={"user": dump(UserOut.from_user(user))})


@api_limit
@router.patch("/{user_id}", dependencies=[Depends(_admin_only)])
def update_user(
    request: Request,
    user_id: int,
    body: UserAdminUpdate,
    store: UserStore = Depends(user_store),
) -> dict:
    """Edit a user. Setting loginAttempts to 0 unfreezes a locked account."""
    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if "role" in updates:
        updates["role"] = Role(updates["role"]).value
    if not store.update_user(user_id, **updates):
        raise NotFound()
    user = store.get_by_id(user_id)
    if user is None:
        # The update itself deactivated the account.
        return success(data={"user": None})
    return success(data={"user": dump(UserOut.from_user(user))})


@api_limit
@router.delete("/{user_id}", status_code=204, dependencies=[Depends(_admin_only)])
def delete_user(request: Request, user_id: int, store: UserStore = Depends(user_store)) -> Response:
    if not store.deactivate(user_id):
        raise NotFound()
    return Response(status_code=204)
