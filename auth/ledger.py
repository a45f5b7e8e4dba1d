"""
auth/ledger.py -- Refresh token issuance, single-use rotation, and revocation.

The ledger sits on top of UserStore and owns the refresh-token rules:

  issue()   -- new opaque token, expires_at = now + refresh lifetime.
  rotate()  -- exchange an active token for a successor. The old record is
               revoked in the same transaction the successor is inserted, and
               only if it was still active. Replaying a rotated token, or
               losing a race against a concurrent rotation, yields InvalidToken.
  revoke()  -- idempotent; logout never fails because a token is gone.
  sweep()   -- housekeeping delete of revoked or expired rows.

Rows are never deleted on rotation or logout, so a replayed token is always
found and rejected as revoked rather than silently treated as unknown.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidToken, TokenExpired
from auth.models import RefreshToken, User
from auth.store import UserStore
from auth.tokens import generate_refresh_token

logger = logging.getLogger("anivault.auth.ledger")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenLedger:
    def __init__(
        self,
        store: UserStore,
        lifetime_seconds: int,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._lifetime = timedelta(seconds=lifetime_seconds)
        self._clock = clock

    @property
    def lifetime_seconds(self) -> int:
        return int(self._lifetime.total_seconds())

    def issue(self, user: User) -> RefreshToken:
        record = self._new_record(user.email)
        self._store.insert_refresh_token(record)
        return record

    def rotate(self, token: str) -> RefreshToken:
        """Revoke token and return a fresh record for the same user.

        Raises InvalidToken if the token is unknown, already revoked, or was
        revoked by a concurrent rotation between lookup and update. Raises
        TokenExpired if the token is active but past its expiry.
        """
        current = self._store.get_refresh_token(token)
        if current is None or current.is_revoked:
            raise InvalidToken()
        if current.is_expired(self._clock()):
            raise TokenExpired("Refresh token has expired.")

        successor = self._new_record(current.user_email)
        if not self._store.rotate_refresh_token(token, successor):
            logger.warning("Refresh token for %s was rotated concurrently; rejecting replay", current.user_email)
            raise InvalidToken()
        return successor

    def revoke(self, token: str) -> None:
        if not self._store.revoke_refresh_token(token):
            logger.debug("Revoke requested for unknown or already revoked refresh token")

    def sweep(self, now: datetime | None = None) -> int:
        """Delete revoked or expired records. Returns the number removed."""
        removed = self._store.delete_stale_refresh_tokens(now or self._clock())
        if removed:
            logger.info("Swept %d stale refresh tokens", removed)
        return removed

    def _new_record(self, user_email: str) -> RefreshToken:
        now = self._clock()
        return RefreshToken(
            token=generate_refresh_token(),
            user_email=user_email,
            expires_at=now + self._lifetime,
            created_at=now,
        )
