"""
auth/store.py -- SQLAlchemy Core persistence layer for user credentials.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. CredentialStore is
the narrow interface the session service depends on -- the service never
builds queries and never sees SQLAlchemy types.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) and UNIQUE(phone) are enforced in SQL. The session service
  checks for duplicates first, but two concurrent sign-ups can both pass that
  check; the constraint is the backstop and surfaces as IntegrityError.

Revocation:
  token_version is never written from a Python-side value. revoke_sessions()
  issues a single UPDATE ... SET token_version = token_version + 1, so
  concurrent sign-outs for the same user (e.g. from several devices) each
  land an increment instead of overwriting each other.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, or_
from sqlalchemy.engine import Engine

from auth.models import User, UserStatus

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone", String(20), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("image", Text),
    Column("status", String(20), nullable=False, server_default=UserStatus.LOGGED_OUT.value),
    Column("token_version", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# Columns update_user() may touch. status/token_version/last_login_at only
# change through record_login() and revoke_sessions().
_UPDATABLE_FIELDS = frozenset({"name", "email", "phone", "hashed_password", "image"})


# ---------------------------------------------------------------------------
# Interface consumed by SessionService
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def find_by_email_or_phone(self, email: str | None = None, phone: str | None = None) -> User | None: ...

    def get_by_id(self, user_id: int) -> User | None: ...

    def exists_by_email_or_phone(self, email: str | None = None, phone: str | None = None) -> bool: ...

    def create_user(self, user: User) -> int: ...

    def update_user(self, user_id: int, **fields) -> bool: ...

    def record_login(self, user_id: int) -> bool: ...

    def revoke_sessions(self, user_id: int) -> bool: ...


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy Core implementation of CredentialStore.

    Usage:
        store = UserStore("sqlite:///blogauth.db")
        uid = store.create_user(User(name="Ada", email="ada@x.com", phone="15550000000", hashed_password=h))
        user = store.find_by_email_or_phone(email="ada@x.com")
        store.close()
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
    # Queries
    # ------------------------------------------------------------------

    def find_by_email_or_phone(self, email: str | None = None, phone: str | None = None) -> User | None:
        """Look up a user by login identifier. Email wins when both are given."""
        if email:
            condition = _users.c.email == email
        elif phone:
            condition = _users.c.phone == phone
        else:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists_by_email_or_phone(self, email: str | None = None, phone: str | None = None) -> bool:
        """Return True if any user already holds this email OR this phone.

        One query for both identifiers keeps the check-then-insert window in
        register_user() as narrow as possible.
        """
        conditions = []
        if email:
            conditions.append(_users.c.email == email)
        if phone:
            conditions.append(_users.c.phone == phone)
        if not conditions:
            return False
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().with_only_columns(_users.c.id).where(or_(*conditions)).limit(1)).first()
        return row is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        status and token_version always start at LOGGED_OUT / 0 regardless of
        what the caller put on the dataclass.

        Raises sqlalchemy.exc.IntegrityError if the email or phone is taken.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    phone=user.phone,
                    hashed_password=user.hashed_password,
                    image=user.image,
                    status=UserStatus.LOGGED_OUT.value,
                    token_version=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update profile/credential fields on an existing user.

        Accepted fields: name, email, phone, hashed_password, image. Anything
        else raises ValueError -- token_version in particular may only move
        through revoke_sessions().

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable via update_user: {sorted(unknown)!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def record_login(self, user_id: int) -> bool:
        """Mark the user as logged in and stamp last_login_at."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(status=UserStatus.LOGGED_IN.value, last_login_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_sessions(self, user_id: int) -> bool:
        """Mark the user as logged out and bump token_version by exactly one.

        The increment is evaluated by the database in the same statement as
        the WHERE match. Returns False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(status=UserStatus.LOGGED_OUT.value, token_version=_users.c.token_version + 1)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            conn.execute(_users.select().with_only_columns(_users.c.id).limit(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        hashed_password=row.hashed_password,
        image=row.image,
        status=UserStatus(row.status),
        token_version=row.token_version,
        last_login_at=row.last_login_at,
        created_at=row.created_at,
    )
