"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

require_principal(kind, roles) builds a dependency that gates a route with
the access guard for one principal kind:

    @router.get("/employees", dependencies=[Depends(require_principal(EMPLOYEE, ("admin", "hr")))])

The dependency reads the kind's TokenCodec from app.state.codecs (wired in the
API lifespan), calls auth.guard.authorize(), stores the verified claims on
request.state.claims for downstream handlers, and returns them. It raises
AuthError subclasses; api/main.py maps those to the JSON error envelope.

No store is consulted here.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from fastapi import Request

from auth.guard import authorize
from auth.kinds import PrincipalKind
from auth.tokens import TokenCodec


def get_codec(request: Request, kind: PrincipalKind) -> TokenCodec:
    return request.app.state.codecs[kind.name]


def require_principal(kind: PrincipalKind, roles: Iterable[str] = ()) -> Callable[[Request], dict[str, Any]]:
    """Return a dependency that requires a valid `kind` access token holding any of `roles`."""
    required = tuple(roles)

    def dependency(request: Request) -> dict[str, Any]:
        claims = authorize(request.headers.get("Authorization"), get_codec(request, kind), required)
        request.state.claims = claims
        return claims

    dependency.__name__ = f"require_{kind.name.lower()}"
    return dependency
