"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
service do the work; these classes only own the shape of the data.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Principal:
    """An account that can authenticate: a User or an Employee.

    The kind is not stored on the record itself -- each kind lives in its own
    table and the AuthService that loaded it knows which kind it serves.

    email is always stored lowercased and trimmed; the AuthService normalizes
    it before any lookup or insert.
    """

    email: str
    password_hash: str
    roles: list[str] = field(default_factory=list)
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshTokenRecord:
    """Server-side copy of an issued refresh token.

    expires_at mirrors the "exp" claim of the signed token exactly. The record
    is the source of truth for display and for the expiry check performed
    before signature verification; the signature is the source of truth for
    cryptographic validity.

    revoked_at is never set by the HTTP flows. It exists so an operator can
    disable a token without deleting the record.
    """

    token: str
    subject_id: int
    subject_kind: str  # "User" | "Employee"
    expires_at: datetime
    revoked_at: datetime | None = None
    created_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class IssuedToken:
    """A freshly minted token together with its absolute expiry (UTC)."""

    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class PublicPrincipal:
    """The projection of a Principal that may be returned to clients."""

    id: int
    email: str
    roles: list[str]
    created_at: datetime | None

    @classmethod
    def from_principal(cls, principal: Principal) -> "PublicPrincipal":
        return cls(
            id=principal.id,
            email=principal.email,
            roles=list(principal.roles),
            created_at=principal.created_at,
        )
