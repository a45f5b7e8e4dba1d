"""
API request and response models for AniVault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
core/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: auth/ + core/ models = domain truth; api/ models = API contract.

Field-level validation here is shallow (presence, length). The authoritative
rules (email pattern, password length, username pattern, reserved names) live
in auth/sessions.py so the CLI and API enforce the same policy.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Role, User
from auth.sessions import SessionTokens
from core.models import Anime, AnimePage

# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    # Not stripped by validation semantics: whitespace is part of a password.
    password: str = Field(min_length=1, max_length=256)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    identifier accepts either the account email or its display name.
    "email" is accepted as an alias for clients that only know the email form.
    """

    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(min_length=1, max_length=255, validation_alias="email")
    password: str = Field(min_length=1, max_length=256)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh and /auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


class SendCodeRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email (send or resend a code)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)


class VerifyCodeRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class UpdateUsernameRequest(BaseModel):
    """Request body for PUT /api/v1/auth/username."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    email: str
    username: str
    role: Role
    email_verified: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            email=user.email,
            username=user.username,
            role=user.role,
            email_verified=user.email_verified,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class TokenResponse(BaseModel):
    """Response for signup, login and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: datetime
    refresh_expires_in: int
    user: UserResponse

    @classmethod
    def from_session(cls, tokens: SessionTokens) -> "TokenResponse":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            expires_at=tokens.expires_at,
            refresh_expires_in=tokens.refresh_expires_in,
            user=UserResponse.from_user(tokens.user),
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class SweepResponse(BaseModel):
    """Response for POST /api/v1/auth/sweep."""

    model_config = ConfigDict(frozen=True)

    removed_refresh_tokens: int
    removed_cache_entries: int


# ---------------------------------------------------------------------------
# Anime -- response models
# ---------------------------------------------------------------------------


class AnimeResponse(BaseModel):
    """Response for GET /api/v1/anime/{id}.

    data carries the Anime dataclass as a plain dict -- the upstream shape is
    wide and mostly optional, so it is not re-declared field by field here.
    """

    model_config = ConfigDict(frozen=True)

    data: dict

    @classmethod
    def from_anime(cls, anime: Anime) -> "AnimeResponse":
        return cls(data=asdict(anime))


class PaginationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_page: int
    last_visible_page: int
    has_next_page: bool


class AnimePageResponse(BaseModel):
    """Response for the search, season and top listing endpoints."""

    model_config = ConfigDict(frozen=True)

    data: list[dict]
    pagination: PaginationResponse

    @classmethod
    def from_page(cls, page: AnimePage) -> "AnimePageResponse":
        return cls(
            data=[asdict(item) for item in page.items],
            pagination=PaginationResponse(**asdict(page.pagination)),
        )


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
