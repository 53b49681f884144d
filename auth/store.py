"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
PrincipalStore and RefreshTokenStore are the repositories; _row_to_principal
and _row_to_refresh_token are the mappers. The AuthService never touches SQL
directly -- it only sees the Protocols in auth/ports.py.

Tables:
  users, employees   -- identical schemas, one per principal kind. The same
                        email may exist once in each.
  refresh_tokens     -- one table for both kinds, tagged by subject_kind.
                        UNIQUE(token) spans kinds.

Timestamps are stored as ISO 8601 strings with an explicit UTC offset so
they survive SQLite (which drops tzinfo from DateTime columns) unchanged.

Security:
  All queries use bound parameters. No f-strings in SQL.

Faults:
  Connection and SQL errors are not caught here. They propagate to the API
  layer's generic 500 handler. The only translated error is the UNIQUE(email)
  violation on principal insert, which becomes ConflictError.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import Principal, RefreshTokenRecord

logger = logging.getLogger("authpair.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()


def _principal_table(name: str) -> Table:
    return Table(
        name,
        _metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("email", String(254), nullable=False, unique=True),
        Column("password_hash", Text, nullable=False),
        Column("roles", Text, nullable=False),  # JSON array of role strings
        Column("created_at", String(32), nullable=False),
        Column("updated_at", String(32), nullable=False),
    )


_users = _principal_table("users")
_employees = _principal_table("employees")

_PRINCIPAL_TABLES: dict[str, Table] = {"User": _users, "Employee": _employees}

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(1024), nullable=False, unique=True),
    Column("subject_id", Integer, nullable=False, index=True),
    Column("subject_kind", String(16), nullable=False),  # "User" | "Employee"
    Column("expires_at", String(32), nullable=False, index=True),
    Column("revoked_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create the shared engine for all auth stores and make sure the schema exists.

    One engine is shared by PrincipalStore (x2) and RefreshTokenStore so they
    use one connection pool. Call engine.dispose() on shutdown.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for one principal kind's table.

    Usage:
        engine = create_store_engine("sqlite:///authpair.db")
        users = PrincipalStore(engine, "User")
        user_id = users.create(Principal(email="a@b.com", password_hash=h, roles=["user"]))
    """

    def __init__(self, engine: Engine, kind_name: str) -> None:
        if kind_name not in _PRINCIPAL_TABLES:
            raise ValueError(f"Unknown principal kind: {kind_name!r}")
        self.engine = engine
        self.kind_name = kind_name
        self._table = _PRINCIPAL_TABLES[kind_name]

    def create(self, principal: Principal) -> int:
        """Insert a new principal and return its assigned database ID.

        Raises ConflictError if the email already exists for this kind. The
        UNIQUE(email) constraint is the final arbiter when two registrations
        for the same email race past the service's own existence check.
        """
        now = _to_iso(_now())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    self._table.insert().values(
                        email=principal.email,
                        password_hash=principal.password_hash,
                        roles=json.dumps(list(principal.roles)),
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError() from exc

    def get_by_email(self, email: str) -> Principal | None:
        """Look up a principal by exact (already normalized) email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._table.select().where(self._table.c.email == email)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_id(self, principal_id: int) -> Principal | None:
        """Look up a principal by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._table.select().where(self._table.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def list_principals(self, limit: int = 100) -> list[Principal]:
        """Return up to `limit` principals, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(self._table.select().order_by(self._table.c.id).limit(limit)).fetchall()
        return [_row_to_principal(r) for r in rows]


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for persisted refresh token records of every kind.

    Every method is a point operation on the token string. The kind filter on
    get() and delete() keeps one kind's flows from consuming the other kind's
    records even if a token string were presented to the wrong endpoint.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def add(self, record: RefreshTokenRecord) -> None:
        """Insert a record. A duplicate token string raises IntegrityError (never expected)."""
        with self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    token=record.token,
                    subject_id=record.subject_id,
                    subject_kind=record.subject_kind,
                    expires_at=_to_iso(record.expires_at),
                    revoked_at=_to_iso(record.revoked_at),
                    created_at=_to_iso(record.created_at or _now()),
                )
            )
            conn.commit()

    def get(self, token: str, subject_kind: str) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token == token) & (_refresh_tokens.c.subject_kind == subject_kind)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete(self, token: str, subject_kind: str) -> bool:
        """Delete the record for `token`. Returns True only if this call removed a row.

        The DELETE is a single statement, so when two callers race on the same
        token exactly one of them sees rowcount == 1.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.token == token) & (_refresh_tokens.c.subject_kind == subject_kind)
                )
            )
            conn.commit()
            return result.rowcount > 0

    def revoke(self, token: str, revoked_at: datetime | None = None) -> bool:
        """Stamp revoked_at on a record without deleting it. Returns True if a row matched.

        Administrative capability -- no HTTP flow calls it. A revoked record
        makes refresh report NotFound.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(_refresh_tokens.c.token == token)
                .values(revoked_at=_to_iso(revoked_at or _now()))
            )
            conn.commit()
            return result.rowcount > 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every record whose expiry has passed. Returns the number removed.

        ISO 8601 strings with a fixed +00:00 offset sort chronologically, so a
        string comparison is a time comparison here.
        """
        cutoff = _to_iso(now or _now())
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < cutoff))
            conn.commit()
            purged = result.rowcount
        if purged:
            logger.info("Purged %d expired refresh token records", purged)
        return purged


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        roles=json.loads(row.roles) if row.roles else [],
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        token=row.token,
        subject_id=row.subject_id,
        subject_kind=row.subject_kind,
        expires_at=_from_iso(row.expires_at),
        revoked_at=_from_iso(row.revoked_at),
        created_at=_from_iso(row.created_at),
    )
