"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthPair happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  Explicit token settings: the auth engine and token codec never read the
      environment. api/main.py asks Settings.token_settings() for a frozen
      TokenSettings per principal kind and passes it in at construction.

Signing secrets:
  Four HS256 secrets exist -- access and refresh, for Users and for
  Employees. They must be pairwise distinct. A token minted under one key
  must never verify under another, so a shared secret would silently undo
  the separation between principal kinds.

  Dev mode (DEBUG=true) generates any missing secret with a warning. Tokens
  will not survive a restart. Production mode refuses to start without all
  four. Secrets shorter than 32 characters are rejected in both modes.

Durations:
  Token lifetimes use short duration strings ("15m", "30d", "12h"). A bare
  integer is read as seconds.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authpair.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authpair.db'}"

_MIN_SECRET_LENGTH = 32

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d|w|y)?\s*$", re.IGNORECASE)

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
    "y": 365.25 * 24 * 60 * 60,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as "15m" or "30d" into a timedelta.

    Supported units: ms, s, m, h, d, w, y. A bare integer means seconds.
    Raises ValueError for anything else, including zero-length windows.
    """
    match = _DURATION_RE.match(str(value))
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}")
    amount = int(match.group(1))
    unit = (match.group(2) or "s").lower()
    if amount <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return timedelta(seconds=amount * _UNIT_SECONDS[unit])


@dataclass(frozen=True)
class TokenSettings:
    """Signing keys and lifetimes for one principal kind."""

    access_secret: str
    refresh_secret: str
    access_ttl: timedelta
    refresh_ttl: timedelta


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # User tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    access_expires: str = "15m"
    refresh_expires: str = "30d"

    # ------------------------------------------------------------------
    # Employee tokens
    # ------------------------------------------------------------------

    emp_jwt_access_secret: str = ""
    emp_jwt_refresh_secret: str = ""
    emp_access_expires: str = "15m"
    emp_refresh_expires: str = "30d"

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 10

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_expires", "refresh_expires", "emp_access_expires", "emp_refresh_expires")
    @classmethod
    def validate_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt.gensalt() accepts 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Fill or reject missing signing secrets, then enforce length and distinctness."""
        names = ("jwt_access_secret", "jwt_refresh_secret", "emp_jwt_access_secret", "emp_jwt_refresh_secret")
        for name in names:
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not survive a restart.", name.upper())

        values = [getattr(self, name) for name in names]
        for name, value in zip(names, values):
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if len(set(values)) != len(values):
            raise ValueError("JWT signing secrets must be distinct for each principal kind and token type.")
        return self

    # ------------------------------------------------------------------
    # Derived settings
    # ------------------------------------------------------------------

    def token_settings(self, kind_name: str) -> TokenSettings:
        """Return the explicit TokenSettings for "User" or "Employee"."""
        if kind_name == "User":
            return TokenSettings(
                access_secret=self.jwt_access_secret,
                refresh_secret=self.jwt_refresh_secret,
                access_ttl=parse_duration(self.access_expires),
                refresh_ttl=parse_duration(self.refresh_expires),
            )
        if kind_name == "Employee":
            return TokenSettings(
                access_secret=self.emp_jwt_access_secret,
                refresh_secret=self.emp_jwt_refresh_secret,
                access_ttl=parse_duration(self.emp_access_expires),
                refresh_ttl=parse_duration(self.emp_refresh_expires),
            )
        raise ValueError(f"Unknown principal kind: {kind_name!r}")


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
