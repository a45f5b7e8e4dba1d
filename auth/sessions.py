"""
auth/sessions.py -- Session lifecycle: signup, login, refresh, logout.

SessionManager composes the three auth collaborators:

  TokenSigner         -- short-lived access tokens (auth/tokens.py)
  RefreshTokenLedger  -- long-lived, single-use refresh tokens (auth/ledger.py)
  UserStore           -- users and verification codes (auth/store.py)

Session states per client: Unauthenticated -> Authenticated(access, refresh)
-> Authenticated(access', refresh') via refresh() -> Revoked via logout().

Policy decisions:
  - Login never revokes other refresh tokens. Multiple concurrent sessions per
    user (phone + browser) are intentional.
  - Email verification gating is a settings flag (EMAIL_VERIFICATION_REQUIRED),
    off by default.
  - The notifier is optional. A missing or failing notifier is logged as a
    warning and signup still completes: the account exists and the user can
    ask for a new code via send_verification_code().
  - A verification code survives MAX_VERIFICATION_ATTEMPTS wrong guesses; the
    next miss discards it and a new code must be requested.

All methods are synchronous; FastAPI runs them in its worker thread pool.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AlreadyExists,
    InvalidCredentials,
    InvalidToken,
    InvalidVerificationCode,
    NotVerified,
    ValidationFailed,
)
from auth.ledger import RefreshTokenLedger
from auth.models import EmailVerification, Role, User
from auth.notifier import Notifier
from auth.store import UserStore
from auth.tokens import TokenSigner, check_password_equalized, generate_verification_code, hash_password

logger = logging.getLogger("anivault.auth.sessions")

EMAIL_PATTERN = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
RESERVED_USERNAMES = frozenset({"admin", "root", "system", "api", "www", "mail", "support", "help", "info"})
MIN_PASSWORD_LENGTH = 8
# bcrypt only hashes the first 72 bytes; longer secrets are rejected up front.
MAX_PASSWORD_BYTES = 72
# Wrong guesses allowed against one verification code before it is discarded.
MAX_VERIFICATION_ATTEMPTS = 5
# Inserts retried when a concurrent signup claims the chosen display name.
_SIGNUP_INSERT_ATTEMPTS = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionTokens:
    """One issued access/refresh pair plus the account it belongs to."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    expires_in: int
    refresh_expires_in: int
    user: User


class SessionManager:
    def __init__(
        self,
        store: UserStore,
        signer: TokenSigner,
        ledger: RefreshTokenLedger,
        access_lifetime_seconds: int = 3600,
        notifier: Notifier | None = None,
        email_verification_required: bool = False,
        verification_code_ttl_seconds: int = 600,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._signer = signer
        self._ledger = ledger
        self._access_lifetime = access_lifetime_seconds
        self._notifier = notifier
        self._verification_required = email_verification_required
        self._code_ttl = timedelta(seconds=verification_code_ttl_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Core lifecycle
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str) -> SessionTokens:
        """Create an account and return its first token pair.

        The display name is the email's local part, suffixed with the smallest
        positive integer that makes it unique ("a", "a1", "a2", ...). Reserved
        names count as taken. If a concurrent signup claims the chosen name
        before the insert lands, the next free name is picked and the insert
        retried. AlreadyExists means the email itself is registered.
        """
        email = _normalize_email(email)
        _validate_password(password)

        if self._store.get_user_by_email(email) is not None:
            raise AlreadyExists("Email already registered.")

        # Hash before choosing a name so the name check sits directly before the insert.
        hashed = hash_password(password)
        base = email.split("@", 1)[0]
        for attempt in range(1, _SIGNUP_INSERT_ATTEMPTS + 1):
            user = User(
                email=email,
                username=self._unique_username(base),
                hashed_password=hashed,
                role=Role.user,
                email_verified=False,
                created_at=self._clock(),
            )
            try:
                self._store.create_user(user)
                break
            except IntegrityError as exc:
                if self._store.get_user_by_email(email) is not None:
                    raise AlreadyExists("Email already registered.") from exc
                logger.info("Display name %r taken concurrently (attempt %d); retrying", user.username, attempt)
        else:
            raise AlreadyExists("Could not allocate a display name. Please retry.")

        logger.info("New account %s (username=%s)", user.email, user.username)
        self._start_verification(user.email)
        return self._issue_session(user)

    def login(self, identifier: str, password: str) -> SessionTokens:
        """Authenticate by email or display name and return a new token pair.

        Unknown identifiers and wrong passwords raise the same
        InvalidCredentials, and both cost one bcrypt verification [C1].
        """
        user = self._resolve_identifier(identifier.strip())
        if not check_password_equalized(password, user.hashed_password if user else None) or user is None:
            raise InvalidCredentials()

        if self._verification_required and not user.email_verified:
            raise NotVerified()

        now = self._clock()
        self._store.update_last_login(user.email, now)
        user.last_login = now
        return self._issue_session(user)

    def refresh(self, refresh_token: str) -> SessionTokens:
        """Rotate refresh_token and mint a new access token for its owner.

        InvalidToken / TokenExpired from the ledger propagate unchanged.
        """
        successor = self._ledger.rotate(refresh_token)
        user = self._store.get_user_by_email(successor.user_email)
        if user is None:
            self._ledger.revoke(successor.token)
            raise InvalidToken("Account no longer exists.")

        access_token, claims = self._signer.issue(user, self._access_lifetime, now=self._clock())
        return SessionTokens(
            access_token=access_token,
            refresh_token=successor.token,
            expires_at=claims.expires_at,
            expires_in=self._access_lifetime,
            refresh_expires_in=self._ledger.lifetime_seconds,
            user=user,
        )

    def logout(self, refresh_token: str) -> None:
        """Revoke refresh_token. Succeeds whether or not the token existed."""
        self._ledger.revoke(refresh_token)

    # ------------------------------------------------------------------
    # Account helpers
    # ------------------------------------------------------------------

    def current_user(self, access_token: str) -> User:
        """Resolve a bearer access token to its (still existing) account."""
        claims = self._signer.verify(access_token, now=self._clock())
        user = self._store.get_user_by_email(claims.sub)
        if user is None:
            raise InvalidToken("Account no longer exists.")
        return user

    def send_verification_code(self, email: str) -> None:
        """(Re)send a verification code.

        Silent for unknown or already verified emails so the endpoint cannot
        be used to probe which addresses are registered.
        """
        user = self._store.get_user_by_email(_normalize_email(email, validate=False))
        if user is None or user.email_verified:
            return
        self._start_verification(user.email)

    def verify_email(self, email: str, code: str) -> User:
        """Confirm the pending code for email and mark the account verified.

        Each wrong guess is counted against the code. The guess that reaches
        MAX_VERIFICATION_ATTEMPTS discards the code.
        """
        email = _normalize_email(email, validate=False)
        verification = self._store.get_verification(email)
        if verification is None:
            raise InvalidVerificationCode()
        now = self._clock()
        if verification.expires_at <= now:
            raise InvalidVerificationCode("Verification code expired.")

        if not secrets.compare_digest(verification.code.encode(), code.strip().encode()):
            attempts = self._store.record_failed_verification(email, now)
            if attempts >= MAX_VERIFICATION_ATTEMPTS:
                self._store.delete_verifications(email)
                logger.warning("Verification code for %s discarded after %d wrong attempts", email, attempts)
                raise InvalidVerificationCode("Too many incorrect attempts. Request a new code.")
            raise InvalidVerificationCode()

        user = self._store.get_user_by_email(email)
        if user is None:
            raise InvalidVerificationCode()
        self._store.update_user(email, email_verified=True)
        self._store.delete_verifications(email)
        user.email_verified = True
        logger.info("Email verified for %s", email)
        return user

    def update_username(self, email: str, new_username: str) -> User:
        new_username = new_username.strip()
        if not USERNAME_PATTERN.match(new_username):
            raise ValidationFailed("Username must be 3-20 characters (letters, numbers, underscore only).")
        if new_username.lower() in RESERVED_USERNAMES:
            raise ValidationFailed("That username is reserved.")

        user = self._store.get_user_by_email(email)
        if user is None:
            raise InvalidToken("Account no longer exists.")
        if user.username == new_username:
            return user
        if self._store.username_exists(new_username):
            raise AlreadyExists("Username already taken.")
        try:
            self._store.update_user(email, username=new_username)
        except IntegrityError as exc:
            raise AlreadyExists("Username already taken.") from exc
        user.username = new_username
        return user

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_identifier(self, identifier: str) -> User | None:
        if EMAIL_PATTERN.match(identifier):
            user = self._store.get_user_by_email(identifier.lower())
            if user is not None:
                return user
        return self._store.get_user_by_username(identifier)

    def _unique_username(self, base: str) -> str:
        candidate = base
        counter = 1
        while candidate.lower() in RESERVED_USERNAMES or self._store.username_exists(candidate):
            candidate = f"{base}{counter}"
            counter += 1
        return candidate

    def _start_verification(self, email: str) -> bool:
        """Persist a fresh code and hand it to the notifier. Never raises on delivery."""
        now = self._clock()
        code = generate_verification_code()
        self._store.replace_verification(
            EmailVerification(email=email, code=code, expires_at=now + self._code_ttl, created_at=now)
        )
        if self._notifier is None:
            logger.warning("No notifier configured; verification code for %s was not delivered", email)
            return False
        try:
            delivered = self._notifier.send_verification_code(email, code)
        except Exception as exc:  # noqa: BLE001 -- delivery failure must not abort signup
            logger.warning("Verification code delivery to %s failed: %s", email, exc)
            return False
        if not delivered:
            logger.warning("Notifier reported failure delivering verification code to %s", email)
        return delivered

    def _issue_session(self, user: User) -> SessionTokens:
        access_token, claims = self._signer.issue(user, self._access_lifetime, now=self._clock())
        refresh = self._ledger.issue(user)
        return SessionTokens(
            access_token=access_token,
            refresh_token=refresh.token,
            expires_at=claims.expires_at,
            expires_in=self._access_lifetime,
            refresh_expires_in=self._ledger.lifetime_seconds,
            user=user,
        )


def _normalize_email(email: str, validate: bool = True) -> str:
    normalized = email.strip().lower()
    if validate and not EMAIL_PATTERN.match(normalized):
        raise ValidationFailed("Invalid email format.")
    return normalized


def _validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailed(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
