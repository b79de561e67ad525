"""
auth/hashing.py -- Password hashing (bcrypt, direct usage, no passlib wrapper).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only uses the first 72 bytes of a password, and bcrypt 5.x raises on
longer input instead of truncating. _secret() truncates explicitly so both
hash() and compare() see the same 72 bytes on every bcrypt version. The API
layer caps password length at 128 characters.
"""

from __future__ import annotations

import bcrypt

_BCRYPT_MAX_BYTES = 72


def _secret(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class BcryptHasher:
    """One-way password hasher with a configurable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(_secret(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def compare(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A missing or malformed hash compares false instead of raising.
        """
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(_secret(plain), hashed.encode("utf-8"))
        except ValueError:
            return False
