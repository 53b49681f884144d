"""
API request and response models for AuthPair REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire field names are camelCase (accessToken, refreshToken, createdAt); Python
attributes stay snake_case via the to_camel alias generator. FastAPI
serializes response models by alias.

Shape only: these models check that fields are present strings of sane size.
Email format and password length are enforced by AuthService, so the same
rules apply to any caller of the core, not just HTTP clients.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import PublicPrincipal, TokenPair


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(_WireModel):
    """Request body for register and login."""

    email: str = Field(max_length=320, examples=["a@b.com"])
    password: str = Field(max_length=1024, examples=["StrongPass123"])


class RefreshRequest(_WireModel):
    """Request body for token refresh and logout."""

    refresh_token: str = Field(max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenPairResponse(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    access_token: str
    refresh_token: str

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token)


class LogoutResponse(BaseModel):
    success: bool = True


class PrincipalResponse(_WireModel):
    """Public projection of a User or Employee."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    roles: list[str]
    created_at: Optional[datetime] = None

    @classmethod
    def from_public(cls, principal: PublicPrincipal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            roles=principal.roles,
            created_at=principal.created_at,
        )


class WhoamiResponse(BaseModel):
    user: PrincipalResponse


class EmployeeMeResponse(BaseModel):
    employee: PrincipalResponse


class EmployeeListResponse(BaseModel):
    employees: list[PrincipalResponse]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
