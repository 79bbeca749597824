"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as tours/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Soft delete: the application never physically removes a user. Every
  lookup here filters on active = true, so a deactivated account behaves
  exactly like a missing one.
  Login-attempt changes are single UPDATE ... SET x = x + 1 statements so
  concurrent failures are never lost. The read that decides whether the
  account is frozen is a separate statement and may race (known gap).

Layer rule: no imports from api/, web/, tours/, or payments/.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from pydantic.alias_generators import to_camel
from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Role, User
from core.query import QueryComposer

_DEFAULT_DB_URL = "sqlite:///wayfarer.db"

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
    Column("photo", String(255), nullable=False, server_default="default.jpg"),
    Column("role", String(30), nullable=False, server_default=Role.USER.value),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("password_changed_at", Float),  # epoch seconds
    Column("password_reset_token", String(64)),  # sha256 hex
    Column("password_reset_expires", Float),  # epoch seconds
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

# Columns never exposed through listings, filters, or projections.
_HIDDEN = {"password", "password_reset_token", "password_reset_expires", "login_attempts", "active"}

USER_FIELDS = {to_camel(c.name): c for c in _users.columns if c.name not in _HIDDEN}

_UPDATABLE = {
    "name",
    "email",
    "photo",
    "role",
    "active",
    "login_attempts",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite threading and WAL settings applied."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///wayfarer.db")
        uid = store.create_user(User(name="Ada", email="ada@example.com", password=hash_password("pw12345678")))
        user = store.get_by_email("ADA@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def _active(self):
        return _users.select().where(_users.c.active.is_(True))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name.strip(),
                    email=normalize_email(user.email),
                    photo=user.photo,
                    role=user.role,
                    password=user.password,
                    password_changed_at=user.password_changed_at,
                    login_attempts=user.login_attempts,
                    active=user.active,
                    created_at=user.created_at or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update whitelisted profile fields on an active user.

        Accepted fields: name, email, photo, role, active, login_attempts.
        Passwords go through set_password() so the change timestamp is kept
        in step with the hash.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & _users.c.active.is_(True)).values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, hashed_password: str, changed_at: float | None = None) -> None:
        """Store a new password hash and stamp the change time.

        The stamp is one second in the past so a token issued right after
        the change (same request) is not treated as stale.
        """
        stamp = (changed_at if changed_at is not None else time.time()) - 1
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password=hashed_password,
                    password_changed_at=stamp,
                    password_reset_token=None,
                    password_reset_expires=None,
                )
            )
            conn.commit()

    def set_reset_token(self, user_id: int, token_hash: str, expires_at: float) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token=token_hash, password_reset_expires=expires_at)
            )
            conn.commit()

    def clear_reset_token(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token=None, password_reset_expires=None)
            )
            conn.commit()

    def increment_login_attempts(self, user_id: int) -> None:
        """Atomically add one to the failed-login counter."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(login_attempts=_users.c.login_attempts + 1)
            )
            conn.commit()

    def reset_login_attempts(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(login_attempts=0))
            conn.commit()

    def deactivate(self, user_id: int) -> bool:
        """Soft-delete a user. Returns False if no active user had that ID."""
        return self.update_user(user_id, active=False)

    # ------------------------------------------------------------------
    # Reads (active users only)
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(self._active().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(self._active().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_ids(self, user_ids: Iterable[int]) -> dict[int, User]:
        """Bulk lookup used to fill in review authors and tour guides."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(self._active().where(_users.c.id.in_(ids))).fetchall()
        return {row.id: _row_to_user(row) for row in rows}

    def get_by_reset_token(self, token_hash: str, now: float | None = None) -> User | None:
        """Find the user holding this reset-token hash, if it has not expired."""
        now = now if now is not None else time.time()
        with self.engine.connect() as conn:
            row = conn.execute(
                self._active().where(
                    (_users.c.password_reset_token == token_hash) & (_users.c.password_reset_expires > now)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find(self, params: Mapping) -> list[dict]:
        """Admin listing through the Query Composer. Returns wire-named dicts."""
        base = select(*USER_FIELDS.values()).where(_users.c.active.is_(True))
        query = QueryComposer(base, params, USER_FIELDS, default_exclude=()).apply()
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [{to_camel(k): v for k, v in row._mapping.items()} for row in rows]

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
        photo=row.photo,
        role=row.role,
        password=row.password,
        password_changed_at=row.password_changed_at,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        login_attempts=row.login_attempts,
        active=bool(row.active),
        created_at=row.created_at,
    )
