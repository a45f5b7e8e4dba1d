"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores and services do the work; these types own the
shape plus trivial predicates such as RefreshToken.is_expired().

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles.

    The str mixin keeps values JSON-friendly so the role can be stored in the
    DB and carried in access-token claims without a translation table.
    """

    admin = "admin"
    user = "user"
    moderator = "moderator"
    guest = "guest"


@dataclass
class User:
    """An AniVault account.

    email is the stable identifier (primary key). username is the public
    display name; it is derived from the email's local part at signup and is
    unique across all accounts.
    """

    email: str
    username: str
    hashed_password: str
    role: Role = Role.user
    email_verified: bool = False
    created_at: datetime | None = None
    last_login: datetime | None = None


@dataclass
class RefreshToken:
    """Server-side record for one opaque refresh token.

    Records are revoked on logout or rotation and only removed by the
    housekeeping sweep, so a replayed token is always found and rejected.
    """

    token: str
    user_email: str
    expires_at: datetime
    is_revoked: bool = False
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class EmailVerification:
    """A pending one-time email verification code."""

    email: str
    code: str
    expires_at: datetime
    created_at: datetime | None = None
    attempts: int = 0  # wrong guesses so far
    last_attempt_at: datetime | None = None
