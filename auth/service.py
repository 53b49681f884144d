"""
auth/service.py -- The authentication protocol engine.

One AuthService instance serves one principal kind. Users and Employees get
two instances of the same class, differing only in the PrincipalKind
descriptor, the TokenCodec (and therefore the signing keys) and the
principal table they are handed. No flow is written twice.

Flows:
  register  -- validate, reject duplicate email, hash, create, issue pair.
  login     -- constant-work credential check, issue pair.
  refresh   -- single-use rotation of a persisted refresh token.
  logout    -- idempotent deletion of a refresh token record.
  whoami    -- public projection of the principal named by verified claims.

Refresh rotation order (each step is a separate store call):
  1. Look up the record by token string. Missing or revoked -> NotFound.
  2. Stored expiry passed -> delete record, Expired.
  3. Signature / claims invalid -> delete record, InvalidToken.
  4. Principal gone -> delete record, NotFound.
  5. Delete the record. If this delete removed nothing, another request
     exchanged the same token between steps 1 and 5 -> NotFound.
  6. Mint a new pair and persist the new record.
  Step 5 before step 6 is what makes a refresh token single-use: a replay of
  a rotated token always ends at step 1 with NotFound.

Persisting the refresh record is the last store write of every flow. A
principal created by register() is not rolled back if that write fails.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from email_validator import EmailNotValidError, validate_email

from auth.errors import (
    ConflictError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    ValidationError,
)
from auth.kinds import PrincipalKind
from auth.models import Principal, PublicPrincipal, RefreshTokenRecord, TokenPair
from auth.passwords import DEFAULT_ROUNDS, dummy_hash, hash_password, verify_password
from auth.ports import CredentialStore, RefreshTokenStore
from auth.tokens import Err, TokenCodec

logger = logging.getLogger("authpair.auth")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_EMAIL_LENGTH = 254


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address after checking its format.

    Raises ValidationError for anything email-validator rejects. Deliverability
    (DNS) is not checked -- registration must not depend on the network.
    """
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required.")
    candidate = email.strip()
    if len(candidate) > MAX_EMAIL_LENGTH:
        raise ValidationError("Email is too long.")
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Invalid email address.") from exc
    return candidate.lower()


class AuthService:
    """Registration, login, refresh rotation, logout and whoami for one principal kind.

    All collaborators are passed in; nothing is read from the environment.
    `now` is injectable so tests can move the clock.
    """

    def __init__(
        self,
        *,
        kind: PrincipalKind,
        codec: TokenCodec,
        principals: CredentialStore,
        refresh_tokens: RefreshTokenStore,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        if codec.kind != kind:
            raise ValueError(f"TokenCodec for {codec.kind.name} cannot serve {kind.name}")
        self.kind = kind
        self.codec = codec
        self.principals = principals
        self.refresh_tokens = refresh_tokens
        self.bcrypt_rounds = bcrypt_rounds
        self._dummy_hash = dummy_hash(bcrypt_rounds)
        self._now = now

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> TokenPair:
        """Create a principal and return its first token pair.

        Raises ValidationError for a malformed email or a password outside
        8..128 characters, ConflictError if the email is already registered
        for this kind.
        """
        email = normalize_email(email)
        if not isinstance(password, str) or not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters."
            )

        if self.principals.get_by_email(email) is not None:
            logger.warning("%s registration rejected: email already registered", self.kind.name)
            raise ConflictError()

        principal = Principal(
            email=email,
            password_hash=hash_password(password, self.bcrypt_rounds),
            roles=list(self.kind.default_roles),
        )
        principal.id = self.principals.create(principal)

        pair = self._issue_pair(principal)
        logger.info("%s %s registered", self.kind.name, principal.id)
        return pair

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> TokenPair:
        """Authenticate with email and password and return a new token pair.

        Unknown email and wrong password raise the same InvalidCredentialsError.
        Both paths perform exactly one bcrypt comparison.
        """
        email = normalize_email(email)
        if not isinstance(password, str) or not password:
            raise ValidationError("Password is required.")

        principal = self.principals.get_by_email(email)
        if principal is None:
            # Equalize timing -- do NOT return before running bcrypt.
            verify_password(password, self._dummy_hash)
            logger.warning("%s login rejected: invalid credentials", self.kind.name)
            raise InvalidCredentialsError()
        if not verify_password(password, principal.password_hash):
            logger.warning("%s login rejected: invalid credentials", self.kind.name)
            raise InvalidCredentialsError()

        pair = self._issue_pair(principal)
        logger.info("%s %s logged in", self.kind.name, principal.id)
        return pair

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair. The presented token is consumed.

        Raises ValidationError, NotFoundError, ExpiredTokenError or
        InvalidTokenError. See the module docstring for the exact order.
        """
        self._require_token(refresh_token)

        record = self.refresh_tokens.get(refresh_token, self.kind.name)
        if record is None or record.revoked_at is not None:
            logger.warning("%s refresh rejected: token not found or revoked", self.kind.name)
            raise NotFoundError("Refresh token not found.")

        if record.expires_at < self._now():
            self.refresh_tokens.delete(refresh_token, self.kind.name)
            logger.warning("%s refresh rejected: token expired", self.kind.name)
            raise ExpiredTokenError()

        result = self.codec.verify_refresh(refresh_token)
        if isinstance(result, Err):
            self.refresh_tokens.delete(refresh_token, self.kind.name)
            logger.warning("%s refresh rejected: %s", self.kind.name, result.error.value)
            raise InvalidTokenError()

        principal = self._load_principal(result.claims["sub"])
        if principal is None:
            self.refresh_tokens.delete(refresh_token, self.kind.name)
            logger.warning("%s refresh rejected: subject no longer exists", self.kind.name)
            raise NotFoundError(f"{self.kind.name} not found.")

        if not self.refresh_tokens.delete(refresh_token, self.kind.name):
            # A concurrent exchange of the same token consumed the record first.
            logger.warning("%s refresh rejected: token already exchanged", self.kind.name)
            raise NotFoundError("Refresh token not found.")

        pair = self._issue_pair(principal)
        logger.info("%s %s refreshed tokens", self.kind.name, principal.id)
        return pair

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str) -> None:
        """Delete the record for `refresh_token`. Unknown tokens are not an error."""
        self._require_token(refresh_token)
        removed = self.refresh_tokens.delete(refresh_token, self.kind.name)
        logger.info("%s logout (record removed=%s)", self.kind.name, removed)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def whoami(self, claims: Mapping[str, Any]) -> PublicPrincipal:
        """Return the public projection of the principal named by verified access claims."""
        principal = self._load_principal(claims.get("sub"))
        if principal is None:
            raise NotFoundError(f"{self.kind.name} not found.")
        return PublicPrincipal.from_principal(principal)

    def list_principals(self, limit: int = 100) -> list[PublicPrincipal]:
        """Return up to `limit` public projections, oldest first."""
        return [PublicPrincipal.from_principal(p) for p in self.principals.list_principals(limit=limit)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_pair(self, principal: Principal) -> TokenPair:
        access = self.codec.issue_access(principal)
        refresh = self.codec.issue_refresh(principal)
        self.refresh_tokens.add(
            RefreshTokenRecord(
                token=refresh.token,
                subject_id=principal.id,
                subject_kind=self.kind.name,
                expires_at=refresh.expires_at,
                created_at=self._now(),
            )
        )
        return TokenPair(access_token=access, refresh_token=refresh.token)

    def _load_principal(self, subject: Any) -> Principal | None:
        try:
            principal_id = int(subject)
        except (TypeError, ValueError):
            return None
        return self.principals.get_by_id(principal_id)

    @staticmethod
    def _require_token(refresh_token: str) -> None:
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            raise ValidationError("refreshToken is required.")
