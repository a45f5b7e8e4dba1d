"""
auth/tokens.py -- JWT signing, password hashing, and refresh-token generation.

Security design decisions:
  JWT: python-jose with HS256. One TokenSigner is built at startup from
       Settings.secret_key and shared by every request. Access tokens carry
       sub (email), username, role, iat and exp. They are bearer-valid until
       exp; nothing here consults revocation state -- revocation lives only in
       the refresh-token ledger (auth/ledger.py).

       verify() checks the signature with verify_exp disabled and then checks
       exp itself. That keeps the two failure modes distinct (InvalidSignature
       vs TokenExpired) and lets tests pin "now" without monkeypatching time.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in check_password_equalized() so response time does not
       reveal whether an account exists [C1].

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits from the OS CSPRNG.
       They are opaque; the server-side ledger is the source of truth.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidSignature, TokenExpired
from auth.models import Role

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("anivault.auth")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "username", "role", "iat", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes (newer releases reject longer
    input outright), so signup validation caps passwords at 72 UTF-8 bytes.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB or >72 byte input rejected by bcrypt 4.x.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("anivault_timing_dummy")


def check_password_equalized(plain: str, hashed: str | None) -> bool:
    """verify_password() that still burns one bcrypt round when hashed is None.

    Callers use this when the account lookup failed, so unknown identifiers
    cost the same as wrong passwords.
    """
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


# ---------------------------------------------------------------------------
# Refresh token values
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh token value (256 bits, URL-safe)."""
    return secrets.token_urlsafe(32)


def generate_verification_code() -> str:
    """Return a 6-digit one-time email verification code."""
    return f"{secrets.randbelow(900_000) + 100_000:06d}"


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessClaims:
    """Decoded access-token claims. iat/exp are integer epoch seconds."""

    sub: str
    username: str
    role: Role
    iat: int
    exp: int

    @classmethod
    def for_user(cls, user: User, now: datetime, lifetime_seconds: int) -> AccessClaims:
        iat = int(now.timestamp())
        return cls(
            sub=user.email,
            username=user.username,
            role=user.role,
            iat=iat,
            exp=iat + lifetime_seconds,
        )

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


class TokenSigner:
    """Signs and verifies access tokens with one symmetric key.

    Usage:
        signer = TokenSigner(settings.secret_key)
        token = signer.sign(AccessClaims.for_user(user, now, 3600))
        claims = signer.verify(token)
    """

    def __init__(self, secret_key: str, algorithm: str = _ALGORITHM) -> None:
        if not secret_key:
            raise ValueError("TokenSigner requires a non-empty secret key.")
        self._secret_key = secret_key
        self._algorithm = algorithm

    def sign(self, claims: AccessClaims) -> str:
        payload = asdict(claims)
        payload["role"] = claims.role.value
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue(self, user: User, lifetime_seconds: int, now: datetime | None = None) -> tuple[str, AccessClaims]:
        """Build claims for user and sign them. Returns (token, claims)."""
        claims = AccessClaims.for_user(user, now or datetime.now(timezone.utc), lifetime_seconds)
        return self.sign(claims), claims

    def verify(self, token: str, now: datetime | None = None) -> AccessClaims:
        """Decode token and return its claims.

        Raises InvalidSignature for tampered, foreign-key, wrong-algorithm or
        malformed tokens, and TokenExpired once exp has passed.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSignature() from exc

        if any(name not in payload for name in _REQUIRED_CLAIMS):
            raise InvalidSignature("Access token is missing required claims.")
        try:
            claims = AccessClaims(
                sub=str(payload["sub"]),
                username=str(payload["username"]),
                role=Role(payload["role"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidSignature("Access token claims are malformed.") from exc

        now_ts = int((now or datetime.now(timezone.utc)).timestamp())
        if now_ts >= claims.exp:
            raise TokenExpired("Access token has expired.")
        return claims
