"""
api/routes/v1/auth.py -- Authentication and access-check REST endpoints.

Routes:
  POST /api/v1/auth/login              -- email/password login; binds the transport session
  POST /api/v1/auth/logout             -- drops the session rows; 200
  GET  /api/v1/auth/me                 -- current identity (requires login)
  GET  /api/v1/auth/rights             -- modules/actions the caller may use
  GET  /api/v1/auth/access             -- one module or (module, action) check
  POST /api/v1/auth/password-strength  -- weak / average / strong verdict
  POST /api/v1/auth/change-password    -- new password for the caller (requires login)
  POST /api/v1/auth/forgot-password    -- issue a reset link; always 202
  POST /api/v1/auth/reset-password     -- consume a reset key
  POST /api/v1/auth/sessions/cleanup   -- sweep expired sessions (Settings/CleanupSessions right)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  Login answers unknown email and wrong password with the same error.
  forgot-password answers 202 whether or not the email exists.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccessResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    ResetPasswordRequest,
    RightsResponse,
)
from auth.authentication import Authentication
from auth.context import AuthContext
from auth.dependencies import get_auth_context, get_authentication, get_current_user, require_action
from auth.models import PasswordStrength, User
from auth.naming import to_camel_case
from auth.passwords import build_reset_link, change_password, get_reset_ttl, request_password_reset, reset_password
from auth.strength import check_password
from core.config import get_settings

logger = logging.getLogger("backoffice.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/logout, /auth/password-strength,
#        /auth/forgot-password, /auth/reset-password: public
# - GET  /auth/rights, /auth/access: public, answer for whoever is calling
# - GET  /auth/me, POST /auth/change-password: requires login (get_current_user)
# - POST /auth/sessions/cleanup: requires Settings/CleanupSessions
router = APIRouter()


def _me(user: User) -> MeResponse:
    return MeResponse(user_id=user.id, email=user.email, is_god=user.is_god)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=MeResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and bind the transport session.

    Returns the same generic error for unknown email and wrong password
    ("bad_credentials") so the endpoint does not reveal which emails exist.
    """
    auth = get_authentication(request)
    ctx = get_auth_context(request)

    session = auth.login_user(ctx, body.email, body.password)
    user = ctx.user
    if session is None or user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(status_code=200, content=_me(user).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """End the back office session. The transport session cookie is kept."""
    get_authentication(request).logout(get_auth_context(request))
    return MessageResponse(message="Logged out.")


@router.get("/auth/rights", response_model=RightsResponse)
def rights(request: Request) -> RightsResponse:
    """Return what the caller may open. Anonymous callers get logged_in=false."""
    auth = get_authentication(request)
    ctx = get_auth_context(request)
    user = auth.get_user(ctx)
    if user is None:
        return RightsResponse(logged_in=False)
    if user.is_god:
        return RightsResponse(logged_in=True, is_god=True, modules=sorted(auth.get_installed_modules(ctx)))
    return RightsResponse(
        logged_in=True,
        modules=sorted(auth.get_allowed_modules(ctx)),
        actions=auth.get_allowed_actions(ctx),
    )


@router.get("/auth/access", response_model=AccessResponse)
def access(
    request: Request,
    module: str = Query(min_length=1, max_length=255),
    action: str | None = Query(default=None, min_length=1, max_length=255),
) -> AccessResponse:
    """Check one module, or one action inside a module, for the caller."""
    auth = get_authentication(request)
    ctx = get_auth_context(request)
    if action is None:
        allowed = auth.is_allowed_module(ctx, module)
    else:
        allowed = auth.is_allowed_action(ctx, action, module)
    return AccessResponse(
        module=to_camel_case(module),
        action=to_camel_case(action) if action is not None else None,
        allowed=allowed,
    )


@router.post("/auth/password-strength", response_model=PasswordStrengthResponse)
async def password_strength(body: PasswordStrengthRequest) -> PasswordStrengthResponse:
    return PasswordStrengthResponse(strength=check_password(body.password))


@router.post("/auth/forgot-password", response_model=MessageResponse, status_code=202)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Issue a reset link for the email if it belongs to a user.

    The response is identical for known and unknown emails. The link is
    handed to app.state.send_reset_link(email, link).
    """
    auth: Authentication = get_authentication(request)
    key = request_password_reset(auth.store, body.email, auth.clock())
    if key is not None:
        link = build_reset_link(_settings.site_url, body.email, key)
        request.app.state.send_reset_link(body.email, link)
    return MessageResponse(message="If the address is known, a reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password with a key from a reset link. Keys work once."""
    auth: Authentication = get_authentication(request)
    ttl = get_reset_ttl(auth.store, _settings.reset_password_ttl_seconds)
    if not reset_password(auth.store, body.email, body.key, body.password, auth.clock(), ttl):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_reset_key", "message": "The reset link is invalid or has expired."},
        )
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the logged-in user."""
    return _me(current_user)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_own_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Replace the caller's password. Weak passwords are refused."""
    if check_password(body.password) is PasswordStrength.weak:
        raise HTTPException(
            status_code=400,
            detail={"code": "weak_password", "message": "Choose a stronger password."},
        )
    change_password(get_authentication(request).store, current_user.id, body.password)
    return MessageResponse(message="Password updated.")


@router.post("/auth/sessions/cleanup", response_model=MessageResponse)
def cleanup_sessions(
    request: Request,
    ctx: AuthContext = Depends(require_action("Settings", "CleanupSessions")),
) -> MessageResponse:
    """Delete every session idle longer than the inactivity window."""
    removed = get_authentication(request).cleanup_old_sessions()
    logger.info("Session sweep by user %s removed %d row(s)", ctx.user.id if ctx.user else "?", removed)
    return MessageResponse(message=f"Removed {removed} expired session(s).")
