"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Services and routes
never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is a UNIQUE constraint, not a check-then-insert. Two
  concurrent creations for one email race on the INSERT; the database lets
  exactly one through and the loser's IntegrityError is translated into
  UserAlreadyExists [C3].

  Refresh-token rotation is a compare-and-swap UPDATE: the new hash is only
  written if the stored hash still equals the one the caller verified. Two
  concurrent refreshes presenting the same token therefore succeed at most
  once [C4].

Layer rule: no imports from api/, mail/, or storage/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from core.errors import UserAlreadyExists

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.USER.value),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("avatar_key", String(512)),  # private storage key, never exposed
    Column("avatar_url", Text),  # provider-hosted picture (third-party login)
    Column("hashed_refresh_token", String(64)),  # HMAC-SHA256 hex, NULL = no session
    Column("is_oauth_user", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


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
        store = UserStore("sqlite:///./shopgate.db")
        user_id = store.create_user(User(email="a@b.c", first_name="A", last_name="B", hashed_password=h))
        user = store.get_by_email("A@B.C")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # busy timeout lets concurrent writers queue instead of failing with
            # "database is locked" before the UNIQUE check can run.
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 15
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.ADMIN.value) & (_users.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned id.

        The INSERT runs inside engine.begin(), so a partially written row is
        never visible to other connections. Raises UserAlreadyExists when the
        email is taken, including when a concurrent request won the race [C3].
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=normalize_email(user.email),
                        first_name=user.first_name,
                        last_name=user.last_name,
                        hashed_password=user.hashed_password,
                        role=Role(user.role).value,
                        is_active=user.is_active,
                        avatar_key=user.avatar_key,
                        avatar_url=user.avatar_url,
                        hashed_refresh_token=user.hashed_refresh_token,
                        is_oauth_user=user.is_oauth_user,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise UserAlreadyExists() from exc
        return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: first_name, last_name, role, is_active.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"first_name", "last_name", "role", "is_active"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        return self._update(user_id, **fields)

    def delete_user(self, user_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def set_password_hash(self, user_id: int, hashed_password: str) -> bool:
        return self._update(user_id, hashed_password=hashed_password)

    def set_avatar_key(self, user_id: int, avatar_key: str) -> bool:
        return self._update(user_id, avatar_key=avatar_key)

    def set_refresh_token_hash(self, user_id: int, token_hash: str | None) -> bool:
        """Unconditionally overwrite (or clear, with None) the stored refresh hash.

        Login uses this to replace any previous session; logout uses it with
        None so every outstanding refresh token stops working.
        """
        return self._update(user_id, hashed_refresh_token=token_hash)

    def rotate_refresh_token_hash(self, user_id: int, expected_hash: str, new_hash: str) -> bool:
        """Replace the stored refresh hash only if it still equals expected_hash [C4].

        Returns False when another request rotated or cleared it first.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.hashed_refresh_token == expected_hash))
                .values(hashed_refresh_token=new_hash, updated_at=_now_iso())
            )
        return result.rowcount == 1

    def _update(self, user_id: int, **values) -> bool:
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        avatar_key=row.avatar_key,
        avatar_url=row.avatar_url,
        hashed_refresh_token=row.hashed_refresh_token,
        is_oauth_user=bool(row.is_oauth_user),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
