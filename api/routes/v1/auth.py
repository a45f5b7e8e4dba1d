"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/signup        -- create account; returns first token pair
  POST /api/v1/auth/login         -- email-or-username + password; returns token pair
  POST /api/v1/auth/refresh       -- rotate refresh token; returns new pair
  POST /api/v1/auth/logout        -- revoke refresh token; always 200
  GET  /api/v1/auth/me            -- current account (requires auth)
  PUT  /api/v1/auth/username      -- change display name (requires auth)
  POST /api/v1/auth/verify-email  -- send / resend a verification code
  POST /api/v1/auth/verify-code   -- confirm a verification code
  POST /api/v1/auth/sweep         -- purge dead refresh tokens + stale cache (admin only)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [H3] POST /verify-email and /verify-code are rate-limited per IP
       (VERIFICATION_RATE_LIMIT, default 5/minute). Wrong codes are also counted
       per code by SessionManager.verify_email().
  [C1] SessionManager.login() equalizes timing between unknown accounts and
       wrong passwords -- never inline a store lookup + verify here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Session operations are synchronous (bcrypt, SQLAlchemy), so these handlers are
plain def and run in FastAPI's thread pool. AuthError subclasses propagate to
the handler in api/main.py, which renders the ErrorResponse envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    SendCodeRequest,
    SignupRequest,
    SweepResponse,
    TokenResponse,
    UpdateUsernameRequest,
    UserResponse,
    VerifyCodeRequest,
)
from auth.dependencies import get_current_user, require_role
from auth.models import Role, User
from auth.sessions import SessionManager
from core.config import get_settings

# Auth policy:
# - signup, login, refresh, logout, verify-email, verify-code: public
# - GET /auth/me, PUT /auth/username: requires auth (get_current_user)
# - POST /auth/sweep: requires admin (require_role(Role.admin))
router = APIRouter()


def _sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=TokenResponse, status_code=201)
def signup(request: Request, response: Response, body: SignupRequest) -> TokenResponse:
    """Create an account and log it in.

    The display name is derived from the email's local part and made unique
    with a numeric suffix. A verification code is sent when a notifier is
    configured; delivery failure does not fail signup.
    """
    tokens = _sessions(request).signup(body.email, body.password)
    _no_store(response)
    return TokenResponse.from_session(tokens)


@limiter.limit(lambda: get_settings().login_rate_limit)  # [H2] must be ABOVE @router
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, response: Response, body: LoginRequest) -> TokenResponse:
    """Authenticate with email or display name and password.

    Returns the same "bad_credentials" error for an unknown identifier and a
    wrong password so the endpoint cannot be used to enumerate accounts.
    """
    tokens = _sessions(request).login(body.identifier, body.password)
    _no_store(response)
    return TokenResponse.from_session(tokens)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenResponse:
    """Exchange a refresh token for a new pair. The old refresh token is consumed."""
    tokens = _sessions(request).refresh(body.refresh_token)
    _no_store(response)
    return TokenResponse.from_session(tokens)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest) -> MessageResponse:
    """Revoke the refresh token. Succeeds even if it was unknown or already revoked.

    Outstanding access tokens stay valid until they expire.
    """
    _sessions(request).logout(body.refresh_token)
    return MessageResponse(message="Logged out.")


@limiter.limit(lambda: get_settings().verification_rate_limit)  # [H3]
@router.post("/auth/verify-email", response_model=MessageResponse, status_code=202)
def send_verification_code(request: Request, body: SendCodeRequest) -> MessageResponse:
    """Send (or resend) a verification code. Response does not reveal whether the email exists."""
    _sessions(request).send_verification_code(body.email)
    return MessageResponse(message="If the account exists and is unverified, a code has been sent.")


@limiter.limit(lambda: get_settings().verification_rate_limit)  # [H3]
@router.post("/auth/verify-code", response_model=UserResponse)
def verify_code(request: Request, body: VerifyCodeRequest) -> UserResponse:
    user = _sessions(request).verify_email(body.email, body.code)
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the account behind the bearer token."""
    return UserResponse.from_user(current_user)


@router.put("/auth/username", response_model=UserResponse)
def update_username(
    request: Request,
    body: UpdateUsernameRequest,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Change the current account's display name.

    Access tokens issued before the change keep the old username claim until
    they are refreshed.
    """
    user = _sessions(request).update_username(current_user.email, body.username)
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Housekeeping (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/sweep", response_model=SweepResponse)
def sweep(
    request: Request,
    current_user: User = Depends(require_role(Role.admin)),
) -> SweepResponse:
    """Delete revoked/expired refresh tokens and expired cache rows now.

    The same work runs periodically in the background (SWEEP_INTERVAL_SECONDS).
    """
    removed_tokens = request.app.state.ledger.sweep()
    removed_cache = request.app.state.cache.purge_expired()
    return SweepResponse(removed_refresh_tokens=removed_tokens, removed_cache_entries=removed_cache)
