"""
auth/tokens.py -- JWT minting and verification for one principal kind.

Security design decisions:
  Algorithm: python-jose with HS256, fixed. Decoding always passes
       algorithms=[HS256], so a token whose header names "none", RS256 or any
       other algorithm is rejected before its claims are looked at. The
       algorithm is never read from the token to pick a key.

  Keys: every TokenCodec holds two secrets (access, refresh) for exactly one
       principal kind. Users and Employees never share a codec, and config
       refuses identical secrets, so a token minted for one kind fails the
       signature check of the other even though the claim names are the same.

  Audience: Employee tokens carry aud="employee"; User tokens carry none.
       A present audience that does not belong to this codec's kind is a
       WRONG_AUDIENCE result. A kind that stamps an audience also requires
       it: an Employee-keyed token without aud was not minted by this codec
       and is reported as INVALID_SIGNATURE. The check is done here rather
       than by jose so the caller can tell "bad signature" (401) from
       "wrong audience" (403).

  Refresh uniqueness: refresh tokens carry a random jti. Without it two
       refresh tokens minted for the same subject within one second would be
       byte-identical, and the refresh_tokens UNIQUE constraint (or worse, a
       rotation that re-issues the token it just consumed) would follow.

Verification never raises for a bad token. It returns Ok(claims) or
Err(TokenError) and callers branch on the error kind explicitly. It never
touches a store.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt

from auth.kinds import PrincipalKind
from auth.models import IssuedToken, Principal
from core.config import TokenSettings

logger = logging.getLogger("authpair.tokens")

ALGORITHM = "HS256"
ACCESS_TYPE = "access"
REFRESH_TYPE = "refresh"


class TokenError(Enum):
    """Why a token failed verification.

    INVALID_SIGNATURE also covers malformed tokens, disallowed algorithms,
    tokens missing the "sub" claim and tokens missing a required "aud" --
    anything that is not a token this codec could have produced.
    """

    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    WRONG_AUDIENCE = "wrong_audience"
    WRONG_TYPE = "wrong_type"


@dataclass(frozen=True)
class Ok:
    claims: dict[str, Any]


@dataclass(frozen=True)
class Err:
    error: TokenError


VerifyResult = Ok | Err


class TokenCodec:
    """Mints and verifies access and refresh tokens for a single principal kind.

    Usage:
        codec = TokenCodec(EMPLOYEE, settings.token_settings("Employee"))
        access = codec.issue_access(employee)
        result = codec.verify_access(access)
        if isinstance(result, Err):
            ...  # branch on result.error
        claims = result.claims
    """

    def __init__(self, kind: PrincipalKind, settings: TokenSettings) -> None:
        self.kind = kind
        self.settings = settings

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, principal: Principal) -> str:
        """Return a signed access token: {sub, email, roles, aud?, typ, iat, exp}."""
        claims: dict[str, Any] = {
            "sub": str(principal.id),
            "email": principal.email,
            "roles": list(principal.roles),
            "typ": ACCESS_TYPE,
        }
        token, _exp = self._encode(claims, self.settings.access_secret, self.settings.access_ttl.total_seconds())
        return token

    def issue_refresh(self, principal: Principal) -> IssuedToken:
        """Return a signed refresh token and its absolute expiry.

        expires_at is built from the very integer written into the "exp"
        claim, so the persisted record and the token can never disagree.
        """
        claims: dict[str, Any] = {
            "sub": str(principal.id),
            "typ": REFRESH_TYPE,
            "jti": uuid4().hex,
        }
        token, exp = self._encode(claims, self.settings.refresh_secret, self.settings.refresh_ttl.total_seconds())
        return IssuedToken(token=token, expires_at=datetime.fromtimestamp(exp, tz=timezone.utc))

    def _encode(self, claims: dict[str, Any], secret: str, ttl_seconds: float) -> tuple[str, int]:
        iat = int(datetime.now(timezone.utc).timestamp())
        exp = iat + int(ttl_seconds)
        payload = dict(claims, iat=iat, exp=exp)
        if self.kind.audience is not None:
            payload["aud"] = self.kind.audience
        return jwt.encode(payload, secret, algorithm=ALGORITHM), exp

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> VerifyResult:
        return self._verify(token, self.settings.access_secret, ACCESS_TYPE)

    def verify_refresh(self, token: str) -> VerifyResult:
        return self._verify(token, self.settings.refresh_secret, REFRESH_TYPE)

    def _verify(self, token: str, secret: str, expected_type: str) -> VerifyResult:
        try:
            # Audience is checked below, not by jose, so a mismatch is
            # reported as WRONG_AUDIENCE instead of a generic claims error.
            claims = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"verify_aud": False})
        except ExpiredSignatureError:
            return Err(TokenError.EXPIRED)
        except JWTError as exc:
            logger.debug("%s %s token rejected: %s", self.kind.name, expected_type, exc)
            return Err(TokenError.INVALID_SIGNATURE)

        if not claims.get("sub"):
            return Err(TokenError.INVALID_SIGNATURE)
        if claims.get("aud") is None and self.kind.audience is not None:
            return Err(TokenError.INVALID_SIGNATURE)
        if not self._audience_matches(claims.get("aud")):
            return Err(TokenError.WRONG_AUDIENCE)
        if claims.get("typ") != expected_type:
            return Err(TokenError.WRONG_TYPE)
        return Ok(claims)

    def _audience_matches(self, aud: Any) -> bool:
        if aud is None:
            return self.kind.audience is None
        if self.kind.audience is None:
            return False
        if isinstance(aud, list):
            return self.kind.audience in aud
        return aud == self.kind.audience
