"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Secret columns (password, otp, otp_expires) are excluded from default reads.
  Callers that genuinely need them pass include_secrets=True.

  find_by_email_and_otp() matches email, code and expiry in ONE query, so the
  reset flow never reveals which of the three checks failed.

Timestamps are stored as naive UTC (DateTime without timezone) so that SQL
comparisons behave the same on SQLite and server databases; the mapper
re-attaches UTC on the way out.

Concurrency: every method is a single statement in its own connection. Two
concurrent OTP verifications for the same user are not serialized; the last
write wins.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from core.errors import ConflictError, ErrorSource

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'authstarter.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(50), nullable=False),
    Column("last_name", String(50), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("otp", String(6)),
    Column("otp_expires", DateTime),  # naive UTC
    Column("avatar", Text),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

_PUBLIC_COLUMNS = [c for c in _users.c if c.name not in ("password", "otp", "otp_expires")]

# Columns update_by_id() may touch. Anything else is a programming error.
_UPDATABLE = {"first_name", "last_name", "password", "role", "is_verified", "otp", "otp_expires", "avatar"}

_SORTABLE = {"created_at", "updated_at", "email", "first_name", "last_name"}


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


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create(User(email="a@x.com", first_name="Ada", last_name="L", password=hashed))
        store.find_by_email("a@x.com")
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
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user: User) -> User:
        """Insert a new user and return the stored record (secrets excluded).

        Raises ConflictError if the email is already registered. The unique
        constraint is the real guard; callers may pre-check for a friendlier
        message but the race is settled here.
        """
        if (user.otp is None) != (user.otp_expires is None):
            raise ValueError("otp and otp_expires must be set together")
        now = _to_db(_now())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        first_name=user.first_name,
                        last_name=user.last_name,
                        email=normalize_email(user.email),
                        password=user.password,
                        role=Role(user.role).value,
                        is_verified=user.is_verified,
                        otp=user.otp,
                        otp_expires=_to_db(user.otp_expires),
                        avatar=user.avatar,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError(
                "User already exists",
                [ErrorSource("email", "An account with this email already exists")],
            ) from exc
        return self.find_by_id(user_id)

    def update_by_id(self, user_id: int, **fields) -> User | None:
        """Update mutable fields and return the fresh record (secrets excluded).

        otp and otp_expires must be passed together, both set or both None.
        Returns None if user_id does not exist.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if ("otp" in fields) != ("otp_expires" in fields):
            raise ValueError("otp and otp_expires must be updated together")
        if "otp" in fields and (fields["otp"] is None) != (fields["otp_expires"] is None):
            raise ValueError("otp and otp_expires must both be set or both be cleared")
        if "otp_expires" in fields:
            fields["otp_expires"] = _to_db(fields["otp_expires"])
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        fields["updated_at"] = _to_db(_now())
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.find_by_id(user_id)

    def delete(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_email(self, email: str, include_secrets: bool = False) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        stmt = self._select(include_secrets).where(_users.c.email == normalize_email(email))
        return self._one(stmt)

    def find_by_id(self, user_id: int, include_secrets: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        stmt = self._select(include_secrets).where(_users.c.id == user_id)
        return self._one(stmt)

    def find_by_email_and_otp(self, email: str, otp: str, now: datetime) -> User | None:
        """Return the user whose email AND active, unexpired OTP match, else None."""
        stmt = self._select(False).where(
            (_users.c.email == normalize_email(email))
            & (_users.c.otp == otp)
            & (_users.c.otp_expires > _to_db(now))
        )
        return self._one(stmt)

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        role: Role | None = None,
        is_verified: bool | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[User], int]:
        """Return one page of users plus the total matching count.

        search matches first name, last name or email (case-insensitive,
        substring). % and _ in search match literally. An unknown sort_by
        silently falls back to created_at; sort_order is "asc" or "desc".
        """
        conditions = []
        if search and search.strip():
            pattern = f"%{_escape_like(search.strip())}%"
            conditions.append(
                or_(
                    _users.c.first_name.ilike(pattern, escape="\\"),
                    _users.c.last_name.ilike(pattern, escape="\\"),
                    _users.c.email.ilike(pattern, escape="\\"),
                )
            )
        if role is not None:
            conditions.append(_users.c.role == Role(role).value)
        if is_verified is not None:
            conditions.append(_users.c.is_verified == is_verified)

        column = _users.c[sort_by] if sort_by in _SORTABLE else _users.c.created_at
        if sort_order == "asc":
            order = (column.asc(), _users.c.id.asc())
        else:
            order = (column.desc(), _users.c.id.desc())

        stmt = (
            self._select(False)
            .where(*conditions)
            .order_by(*order)
            .limit(limit)
            .offset((page - 1) * limit)
        )
        count_stmt = select(func.count()).select_from(_users).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _select(include_secrets: bool):
        return _users.select() if include_secrets else select(*_PUBLIC_COLUMNS)

    def _one(self, stmt) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # Secret columns are absent from default selects and map to None.
    mapping = row._mapping
    return User(
        id=mapping["id"],
        first_name=mapping["first_name"],
        last_name=mapping["last_name"],
        email=mapping["email"],
        role=Role(mapping["role"]),
        is_verified=bool(mapping["is_verified"]),
        avatar=mapping["avatar"],
        password=mapping.get("password"),
        otp=mapping.get("otp"),
        otp_expires=_from_db(mapping.get("otp_expires")),
        created_at=_from_db(mapping["created_at"]),
        updated_at=_from_db(mapping["updated_at"]),
    )
