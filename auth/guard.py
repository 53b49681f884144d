"""
auth/guard.py -- Stateless access guard for protected resources.

authorize() is the whole gate: parse "Authorization: Bearer <token>", verify
the access token with the principal kind's codec, then check roles. It is
pure -- no store, no request object -- so the FastAPI dependency in
auth/dependencies.py is a thin wrapper and the gate itself is trivially unit
testable.

Access tokens are not looked up anywhere. Logging out or rotating a refresh
token does not shorten the life of an access token already handed out; it
stays valid until its own exp, which is why its lifetime is short.

Outcomes:
  no / non-Bearer header             -> UnauthorizedError("Missing token")
  bad signature, expired, wrong typ  -> UnauthorizedError("Invalid or expired token")
  required audience missing          -> UnauthorizedError("Invalid or expired token")
  audience of another kind           -> ForbiddenError("Wrong audience")
  required roles, none held          -> ForbiddenError("Forbidden")

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from auth.errors import ForbiddenError, UnauthorizedError
from auth.tokens import Err, TokenCodec, TokenError

_BEARER_PREFIX = "Bearer "


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an Authorization header value, or None."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


def authorize(
    authorization: str | None,
    codec: TokenCodec,
    required_roles: Iterable[str] = (),
) -> dict[str, Any]:
    """Verify a bearer access token and return its claims.

    required_roles is an any-of set: holding one of them is enough. An empty
    set only requires a valid token.
    """
    token = extract_bearer(authorization)
    if token is None:
        raise UnauthorizedError("Missing token.")

    result = codec.verify_access(token)
    if isinstance(result, Err):
        if result.error is TokenError.WRONG_AUDIENCE:
            raise ForbiddenError("Wrong audience.")
        raise UnauthorizedError("Invalid or expired token.")

    claims = result.claims
    roles = set(required_roles)
    if roles:
        held = claims.get("roles") or []
        if not isinstance(held, list) or roles.isdisjoint(held):
            raise ForbiddenError()
    return claims
