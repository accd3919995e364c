"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_principal / _row_to_token /
_row_to_failed_attempts are the mappers. Login and resolution code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  tokens.token (the HMAC reference) carries a UNIQUE index. That index, not
  the pre-insert existence check, is the authority for token uniqueness:
  insert_token() lets IntegrityError propagate so the minter can regenerate.

Concurrency:
  increment_failed_attempts() is a single UPSERT so concurrent failures for
  the same principal never lose an increment.

DB path: auth/authgate.db by default (Settings.database_url).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from auth.models import FailedAttemptRecord, Identity, Principal, Token
from auth.privileges import Privileges

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("rank", Integer, nullable=False, server_default="1"),
    Column("privileges", Integer, nullable=False, server_default="0"),
    Column("password_hash", Text, nullable=False),  # bcrypt(md5_hex(password))
    Column("password_version", Integer, nullable=False, server_default="2"),
    Column("allowed", Integer, nullable=False, server_default="1"),  # 0 = banned
    Column("created_at", String(32), nullable=False),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("privileges", Integer, nullable=False, server_default="0"),
    Column("description", Text, nullable=False, server_default=""),
    Column("token", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
)

_failed_attempts = Table(
    "failed_login_attempts",
    _metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("last_attempt", String(32), nullable=False),
)

# One statement so two concurrent failures cannot both read N and write N+1.
# A record whose last failure is older than :cutoff restarts at 1.
_INCREMENT_FAILED_SQL = text(
    """
    INSERT INTO failed_login_attempts (user_id, attempts, last_attempt)
    VALUES (:user_id, 1, :now)
    ON CONFLICT (user_id) DO UPDATE SET
        attempts = CASE
            WHEN failed_login_attempts.last_attempt < :cutoff THEN 1
            ELSE failed_login_attempts.attempts + 1
        END,
        last_attempt = excluded.last_attempt
    """
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for principals, tokens, and failed-attempt counters.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        uid = store.create_principal(Principal(username="alice", rank=1, password_hash=hash_password("pw")))
        principal = store.get_principal_by_id(uid)
        store.close()

    Every method lets sqlalchemy.exc.SQLAlchemyError propagate. Callers
    decide whether a store failure is fatal to the request.
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def create_principal(self, principal: Principal) -> int:
        """Insert a principal and return its ID.

        Bootstrap and test helper only: accounts are otherwise managed by
        external flows. Raises IntegrityError if the username is taken.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=principal.username,
                    rank=principal.rank,
                    privileges=principal.privileges,
                    password_hash=principal.password_hash,
                    password_version=principal.password_version,
                    allowed=0 if principal.banned else 1,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_principal_by_id(self, user_id: int) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id).limit(1)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_principal_by_username(self, username: str) -> Principal | None:
        """Exact, case-sensitive match. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username).limit(1)).fetchone()
        return _row_to_principal(row) if row is not None else None

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def token_reference_exists(self, reference: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_tokens.c.id).where(_tokens.c.token == reference).limit(1)
            ).fetchone()
        return row is not None

    def insert_token(self, token: Token) -> int:
        """Insert a token row and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the reference is already
        taken, including when a concurrent insert won the race after the
        caller's existence check.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.insert().values(
                    user_id=token.user_id,
                    privileges=token.privileges,
                    description=token.description,
                    token=token.reference,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_token_by_reference(self, reference: str) -> Token | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.token == reference).limit(1)).fetchone()
        return _row_to_token(row) if row is not None else None

    def get_identity(self, reference: str) -> Identity | None:
        """Resolve a token reference to the identity it grants.

        The join drops tokens whose owner no longer exists.
        """
        query = (
            select(_tokens.c.id, _tokens.c.user_id, _tokens.c.privileges, _users.c.username)
            .select_from(_tokens.join(_users, _users.c.id == _tokens.c.user_id))
            .where(_tokens.c.token == reference)
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        return Identity(
            user_id=row.user_id,
            username=row.username,
            privileges=Privileges(row.privileges),
            token_id=row.id,
        )

    def count_tokens(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_tokens).where(_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Failed login attempts
    # ------------------------------------------------------------------

    def get_failed_attempts(self, user_id: int) -> FailedAttemptRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_failed_attempts.select().where(_failed_attempts.c.user_id == user_id)).fetchone()
        return _row_to_failed_attempts(row) if row is not None else None

    def increment_failed_attempts(self, user_id: int, cutoff: str = "") -> None:
        """Add one failure for user_id, creating the record if needed.

        cutoff is an ISO 8601 timestamp. A record last touched before it is
        restarted at 1 instead of incremented. The empty string never
        compares lower, so the default keeps counting indefinitely.
        """
        with self.engine.connect() as conn:
            conn.execute(_INCREMENT_FAILED_SQL, {"user_id": user_id, "now": _now_iso(), "cutoff": cutoff})
            conn.commit()

    def reset_failed_attempts(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_failed_attempts.delete().where(_failed_attempts.c.user_id == user_id))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        username=row.username,
        rank=row.rank,
        privileges=row.privileges,
        password_hash=row.password_hash,
        password_version=row.password_version,
        banned=not row.allowed,
        created_at=row.created_at,
    )


def _row_to_token(row) -> Token:
    return Token(
        id=row.id,
        user_id=row.user_id,
        privileges=row.privileges,
        reference=row.token,
        description=row.description,
        created_at=row.created_at,
    )


def _row_to_failed_attempts(row) -> FailedAttemptRecord:
    return FailedAttemptRecord(
        user_id=row.user_id,
        attempts=row.attempts,
        last_attempt=row.last_attempt,
    )
