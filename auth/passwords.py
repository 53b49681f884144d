"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly rather than through passlib. passlib's wrap-bug
detection hashes a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error.

bcrypt only reads the first 72 bytes of its input, and bcrypt 5 raises
instead of truncating. _encode() cuts the UTF-8 encoding at 72 bytes so a
128-character password (the AuthService cap) hashes and verifies the same
way on every bcrypt release.

Timing equalization:
  dummy_hash(rounds) returns a hash at the same cost as real ones, computed
  once per cost factor. AuthService.login() runs verify_password() against
  it when the email is unknown, so an unknown email costs the same bcrypt
  work as a wrong password and response time does not reveal which
  accounts exist.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 10
_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash is a
    mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache
def dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a throwaway hash whose cost factor matches hash_password(..., rounds)."""
    return hash_password("authpair_timing_dummy", rounds)
