"""
api/routes/v1/auth.py -- Authentication REST endpoints, one router per principal kind.

build_auth_router(kind) returns the same five routes for any PrincipalKind.
api/main.py mounts it twice:

  /api/v1/auth/...            -- Users
  /api/v1/employee-auth/...   -- Employees

Routes (relative to the mount prefix):
  POST /register        -- {email, password} -> 201 {accessToken, refreshToken}
  POST /login           -- {email, password} -> 200 {accessToken, refreshToken}
  POST /token/refresh   -- {refreshToken}    -> 200 {accessToken, refreshToken}
  POST /logout          -- {refreshToken}    -> 200 {success: true}
  GET  /whoami          -- bearer token      -> 200 {user: {id, email, roles, createdAt}}

Handlers are plain `def` so FastAPI runs them in its thread pool: bcrypt and
the SQLAlchemy calls are blocking.

Errors raised by AuthService (AuthError subclasses) are not caught here;
api/main.py turns them into the error envelope with the right status.

Security:
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    CredentialsRequest,
    LogoutResponse,
    PrincipalResponse,
    RefreshRequest,
    TokenPairResponse,
    WhoamiResponse,
)
from auth.dependencies import require_principal
from auth.kinds import PrincipalKind
from auth.service import AuthService


def get_auth_service(request: Request, kind: PrincipalKind) -> AuthService:
    return request.app.state.auth_services[kind.name]


def build_auth_router(kind: PrincipalKind) -> APIRouter:
    """Return the register/login/refresh/logout/whoami router for `kind`."""
    router = APIRouter()
    require_kind = require_principal(kind)

    @router.post("/register", response_model=TokenPairResponse, status_code=201)
    def register(request: Request, response: Response, body: CredentialsRequest) -> TokenPairResponse:
        """Create an account and return its first token pair.

        400 for a malformed email or a password outside 8..128 characters,
        409 if the email is already registered.
        """
        pair = get_auth_service(request, kind).register(body.email, body.password)
        response.headers["Cache-Control"] = "no-store"
        return TokenPairResponse.from_pair(pair)

    @router.post("/login", response_model=TokenPairResponse)
    def login(request: Request, response: Response, body: CredentialsRequest) -> TokenPairResponse:
        """Authenticate with email and password.

        Returns the same 401 for an unknown email and a wrong password.
        """
        pair = get_auth_service(request, kind).login(body.email, body.password)
        response.headers["Cache-Control"] = "no-store"
        return TokenPairResponse.from_pair(pair)

    @router.post("/token/refresh", response_model=TokenPairResponse)
    def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
        """Rotate a refresh token. The submitted token cannot be used again.

        404 unknown/revoked/already-used token, 403 expired or invalid token.
        """
        pair = get_auth_service(request, kind).refresh(body.refresh_token)
        response.headers["Cache-Control"] = "no-store"
        return TokenPairResponse.from_pair(pair)

    @router.post("/logout", response_model=LogoutResponse)
    def logout(request: Request, body: RefreshRequest) -> LogoutResponse:
        """Revoke a refresh token. Succeeds whether or not the token was known."""
        get_auth_service(request, kind).logout(body.refresh_token)
        return LogoutResponse(success=True)

    @router.get("/whoami", response_model=WhoamiResponse)
    def whoami(request: Request, claims: dict[str, Any] = Depends(require_kind)) -> WhoamiResponse:
        """Return the profile of the principal the bearer token was issued to."""
        principal = get_auth_service(request, kind).whoami(claims)
        return WhoamiResponse(user=PrincipalResponse.from_public(principal))

    return router
