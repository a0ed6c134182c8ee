"""
auth/hashing.py -- Password hashing (bcrypt) with awaitable wrappers.

Security design decisions:
  bcrypt is the right choice for low-entropy secrets (passwords) because its
  cost factor makes brute-force expensive. Every hash gets its own salt from
  bcrypt.gensalt(); verification goes through bcrypt.checkpw, which compares
  in constant time and never reconstructs the password.

  bcrypt is deliberately slow, so PasswordHasher runs both operations in the
  thread pool (fastapi.concurrency.run_in_threadpool). A login in progress
  never stalls other requests on the event loop.

  DUMMY_HASH enables timing equalization: AuthService always runs a verify,
  even when the username does not exist, so response time does not reveal
  whether an account exists.

Using bcrypt directly rather than passlib[bcrypt]: passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt
from fastapi.concurrency import run_in_threadpool


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt; the API layer caps
    password length at 255 characters (Pydantic field).
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Malformed hashes count as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = hash_password("authgate_timing_dummy")


class PasswordHasher:
    """Awaitable facade over hash_password / verify_password."""

    async def hash(self, plain: str) -> str:
        return await run_in_threadpool(hash_password, plain)

    async def verify(self, plain: str, hashed: str | None) -> bool:
        """Verify plain against hashed; a missing hash is checked against DUMMY_HASH and fails."""
        if not hashed:
            await run_in_threadpool(verify_password, plain, DUMMY_HASH)
            return False
        return await run_in_threadpool(verify_password, plain, hashed)
