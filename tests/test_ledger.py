"""
tests/test_ledger.py -- Refresh token ledger: issue, rotate, revoke, sweep.

Covers:
  - Rotation returns a fresh token for the same user and revokes the old one
  - Replay of a rotated token -> InvalidToken (no replay)
  - Expired but unrevoked token -> TokenExpired
  - revoke() twice -> no error, record stays revoked
  - sweep() removes revoked and expired records only
  - Concurrent rotation of one token -> exactly one winner
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import text

from auth.errors import InvalidToken, TokenExpired
from auth.ledger import RefreshTokenLedger
from auth.models import User
from auth.store import UserStore


def _user(store: UserStore, email: str = "rin@example.com") -> User:
    user = User(email=email, username=email.split("@")[0], hashed_password="x")
    store.create_user(user)
    return user


class TestRotation:
    def test_rotate_issues_successor_and_revokes_original(self, store, ledger) -> None:
        original = ledger.issue(_user(store))
        successor = ledger.rotate(original.token)

        assert successor.token != original.token
        assert successor.user_email == original.user_email
        assert store.get_refresh_token(original.token).is_revoked
        assert not store.get_refresh_token(successor.token).is_revoked

    def test_replaying_rotated_token_fails(self, store, ledger) -> None:
        original = ledger.issue(_user(store))
        ledger.rotate(original.token)
        with pytest.raises(InvalidToken):
            ledger.rotate(original.token)

    def test_successor_can_be_rotated_in_turn(self, store, ledger) -> None:
        first = ledger.issue(_user(store))
        second = ledger.rotate(first.token)
        third = ledger.rotate(second.token)
        assert third.token not in (first.token, second.token)

    def test_unknown_token_fails(self, ledger) -> None:
        with pytest.raises(InvalidToken):
            ledger.rotate("never-issued")

    def test_expired_token_fails_even_if_not_revoked(self, store, ledger, clock) -> None:
        record = ledger.issue(_user(store))
        clock.advance(3600)
        with pytest.raises(TokenExpired):
            ledger.rotate(record.token)
        assert not store.get_refresh_token(record.token).is_revoked

    def test_expiry_is_lifetime_from_issue(self, store, ledger, clock) -> None:
        record = ledger.issue(_user(store))
        assert (record.expires_at - clock()).total_seconds() == 3600
        clock.advance(3599)
        ledger.rotate(record.token)


class TestRevocation:
    def test_revoke_twice_is_idempotent(self, store, ledger) -> None:
        record = ledger.issue(_user(store))
        ledger.revoke(record.token)
        ledger.revoke(record.token)
        assert store.get_refresh_token(record.token).is_revoked

    def test_revoke_unknown_token_is_silent(self, ledger) -> None:
        ledger.revoke("does-not-exist")

    def test_revoked_token_cannot_rotate(self, store, ledger) -> None:
        record = ledger.issue(_user(store))
        ledger.revoke(record.token)
        with pytest.raises(InvalidToken):
            ledger.rotate(record.token)

    def test_other_sessions_survive_revocation(self, store, ledger) -> None:
        user = _user(store)
        phone = ledger.issue(user)
        laptop = ledger.issue(user)
        ledger.revoke(phone.token)
        assert ledger.rotate(laptop.token).user_email == user.email


class TestSweep:
    def test_sweep_removes_revoked_and_expired_only(self, store, ledger, clock) -> None:
        user = _user(store)
        revoked = ledger.issue(user)
        ledger.revoke(revoked.token)
        old = ledger.issue(user)
        clock.advance(1800)
        fresh = ledger.issue(user)
        clock.advance(1800)  # old is now exactly at expiry

        assert ledger.sweep() == 2
        assert store.get_refresh_token(revoked.token) is None
        assert store.get_refresh_token(old.token) is None
        assert store.get_refresh_token(fresh.token) is not None

    def test_sweep_with_nothing_to_do(self, store, ledger) -> None:
        ledger.issue(_user(store))
        assert ledger.sweep() == 0


class TestConcurrentRotation:
    """Racing rotations of one token must produce exactly one successor.

    Uses a file-backed SQLite DB so each thread gets a real connection that
    waits on the busy handler instead of failing with SQLITE_LOCKED.
    """

    def test_exactly_one_concurrent_rotation_wins(self, tmp_path) -> None:
        store = UserStore(f"sqlite:///{tmp_path / 'race.db'}")
        try:
            ledger = RefreshTokenLedger(store, lifetime_seconds=3600)
            original = ledger.issue(_user(store))

            workers = 8
            barrier = threading.Barrier(workers)
            winners: list[str] = []
            losers: list[Exception] = []
            lock = threading.Lock()

            def attempt() -> None:
                barrier.wait()
                try:
                    successor = ledger.rotate(original.token)
                except InvalidToken as exc:
                    with lock:
                        losers.append(exc)
                else:
                    with lock:
                        winners.append(successor.token)

            threads = [threading.Thread(target=attempt) for _ in range(workers)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=30)

            assert len(winners) == 1
            assert len(losers) == workers - 1
            assert store.get_refresh_token(winners[0]) is not None
            with store.engine.connect() as conn:
                active = conn.execute(text("SELECT COUNT(*) FROM refresh_tokens WHERE is_revoked = 0")).scalar()
            assert active == 1
        finally:
            store.close()
