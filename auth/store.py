"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user /
_row_to_refresh_token / _row_to_verification are the mappers. Services and
route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  rotate_refresh_token() is the one write that must be linearizable per token.
  It runs a conditional UPDATE (... WHERE token = ? AND is_revoked = 0) and the
  successor INSERT inside a single transaction. Two racing rotations both reach
  the UPDATE, but only one sees rowcount == 1; the other gets False and inserts
  nothing. Because the UPDATE is the first statement of the transaction,
  SQLite's busy handler covers the write-lock wait in both journal modes.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so lexical comparison in SQL matches chronological order --
delete_stale_refresh_tokens() relies on that.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import EmailVerification, RefreshToken, Role, User

_DEFAULT_DB_URL = "sqlite:///anivault.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("last_login", String(40)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("user_email", String(255), nullable=False, index=True),
    Column("expires_at", String(40), nullable=False, index=True),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
)

_email_verifications = Table(
    "email_verifications",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("code", String(12), nullable=False),
    Column("expires_at", String(40), nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("last_attempt_at", String(40)),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Credential store for users, refresh tokens and verification codes.

    Usage:
        store = UserStore("sqlite:///anivault.db")
        store.create_user(User(email="a@x.com", username="a", hashed_password=...))
        user = store.get_user_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> None:
        """Insert a new user.

        Raises sqlalchemy.exc.IntegrityError if the email or username is
        already taken. The session manager pre-checks both, so an error here
        means a concurrent signup won the race.
        """
        created_at = user.created_at or _now()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    email=user.email,
                    username=user.username,
                    password_hash=user.hashed_password,
                    role=user.role.value,
                    email_verified=1 if user.email_verified else 0,
                    created_at=_to_iso(created_at),
                    last_login=_to_iso(user.last_login) if user.last_login else None,
                )
            )
        user.created_at = created_at

    def get_user_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact display name (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def username_exists(self, username: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.username == username)
            ).scalar()
        return (count or 0) > 0

    def update_user(self, email: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: username, password_hash, role, email_verified.
        Returns True if a row was updated, False if the email was not found.
        """
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.email == email).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, email: str, when: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.email == email).values(last_login=_to_iso(when)))

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def insert_refresh_token(self, record: RefreshToken) -> None:
        created_at = record.created_at or _now()
        with self.engine.begin() as conn:
            conn.execute(_refresh_token_insert(record, created_at))
        record.created_at = created_at

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """Look up a refresh token record by value, revoked or not."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def rotate_refresh_token(self, old_token: str, successor: RefreshToken) -> bool:
        """Revoke old_token and insert successor in one transaction.

        The revoke is conditional on the row still being active. Returns False
        (and writes nothing) when another caller already revoked it.
        """
        created_at = successor.created_at or _now()
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == old_token) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1)
            )
            if result.rowcount != 1:
                return False
            conn.execute(_refresh_token_insert(successor, created_at))
        successor.created_at = created_at
        return True

    def revoke_refresh_token(self, token: str) -> bool:
        """Mark one token revoked. Returns True only if it was active before."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1)
            )
        return result.rowcount > 0

    def delete_stale_refresh_tokens(self, now: datetime) -> int:
        """Delete tokens that are revoked or expired. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.is_revoked == 1) | (_refresh_tokens.c.expires_at <= _to_iso(now))
                )
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Email verification codes
    # ------------------------------------------------------------------

    def replace_verification(self, verification: EmailVerification) -> None:
        """Store a new code for an email, discarding any earlier pending code."""
        created_at = verification.created_at or _now()
        with self.engine.begin() as conn:
            conn.execute(_email_verifications.delete().where(_email_verifications.c.email == verification.email))
            conn.execute(
                _email_verifications.insert().values(
                    email=verification.email,
                    code=verification.code,
                    expires_at=_to_iso(verification.expires_at),
                    created_at=_to_iso(created_at),
                )
            )
        verification.created_at = created_at

    def get_verification(self, email: str) -> EmailVerification | None:
        """Return the pending code for email, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _email_verifications.select()
                .where(_email_verifications.c.email == email)
                .order_by(_email_verifications.c.id.desc())
            ).fetchone()
        return _row_to_verification(row) if row is not None else None

    def record_failed_verification(self, email: str, when: datetime) -> int:
        """Count one wrong guess against the pending code. Returns the new total.

        The increment happens in SQL so concurrent guesses are all counted.
        Returns 0 when no code is pending.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _email_verifications.update()
                .where(_email_verifications.c.email == email)
                .values(attempts=_email_verifications.c.attempts + 1, last_attempt_at=_to_iso(when))
            )
            attempts = conn.execute(
                select(func.max(_email_verifications.c.attempts)).where(_email_verifications.c.email == email)
            ).scalar()
        return attempts or 0

    def delete_verifications(self, email: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_email_verifications.delete().where(_email_verifications.c.email == email))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _refresh_token_insert(record: RefreshToken, created_at: datetime):
    return _refresh_tokens.insert().values(
        token=record.token,
        user_email=record.user_email,
        expires_at=_to_iso(record.expires_at),
        is_revoked=1 if record.is_revoked else 0,
        created_at=_to_iso(created_at),
    )


def _row_to_user(row) -> User:
    return User(
        email=row.email,
        username=row.username,
        hashed_password=row.password_hash,
        role=Role(row.role),
        email_verified=bool(row.email_verified),
        created_at=_from_iso(row.created_at),
        last_login=_from_iso(row.last_login),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        token=row.token,
        user_email=row.user_email,
        expires_at=_from_iso(row.expires_at),
        is_revoked=bool(row.is_revoked),
        created_at=_from_iso(row.created_at),
    )


def _row_to_verification(row) -> EmailVerification:
    return EmailVerification(
        email=row.email,
        code=row.code,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
        attempts=row.attempts,
        last_attempt_at=_from_iso(row.last_attempt_at),
    )
