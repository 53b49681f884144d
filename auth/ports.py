"""
auth/ports.py -- Store interfaces consumed by the AuthService.

The AuthService depends on these Protocols, not on SQLAlchemy. auth/store.py
provides the production implementations; tests/fakes.py provides in-memory
ones so the protocol engine can be unit tested without a database.

Contract notes for implementers:
  CredentialStore.create() raises auth.errors.ConflictError when the email
      is already taken for that kind, including when a concurrent insert wins
      the race against the service's own pre-check.

  RefreshTokenStore.delete() reports whether a row was removed. The refresh
      flow relies on this: when two requests exchange the same token at once,
      only the one whose delete removed the row may mint a new pair.

  All lookups are point lookups keyed by id, email or token string.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import Principal, RefreshTokenRecord


class CredentialStore(Protocol):
    """Principal records for one kind (Users or Employees)."""

    def get_by_email(self, email: str) -> Principal | None: ...

    def get_by_id(self, principal_id: int) -> Principal | None: ...

    def create(self, principal: Principal) -> int: ...

    def list_principals(self, limit: int = 100) -> list[Principal]: ...


class RefreshTokenStore(Protocol):
    """Persisted refresh token records for every kind, keyed by token string."""

    def add(self, record: RefreshTokenRecord) -> None: ...

    def get(self, token: str, subject_kind: str) -> RefreshTokenRecord | None: ...

    def delete(self, token: str, subject_kind: str) -> bool: ...

    def revoke(self, token: str, revoked_at: datetime | None = None) -> bool: ...
