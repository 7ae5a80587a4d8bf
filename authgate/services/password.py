"""
AuthGate — Password Hashing
=============================

What:  Argon2id hashing and verification (argon2-cffi), with read-only
       support for the legacy unsalted SHA-256 hex digests.
How:   New hashes are always Argon2id with a random per-hash salt. A stored
       legacy digest still verifies; `needs_rehash()` reports it so that
       AuthService replaces it with Argon2id on the next successful login.
Who:   AuthService.

Hashing is CPU and memory bound; the async wrappers run it in Starlette's
threadpool so the event loop is never blocked.
"""

import hashlib
import hmac
import logging
import re

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from starlette.concurrency import run_in_threadpool

from authgate.config import Settings

logger = logging.getLogger(__name__)

_LEGACY_SHA256 = re.compile(r"^[0-9a-fA-F]{64}$")


def is_legacy_digest(stored_hash: str) -> bool:
    return bool(_LEGACY_SHA256.match(stored_hash))


class PasswordService:
    """Thin wrapper around argon2.PasswordHasher."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4):
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )
        # Verified against when the identity is unknown, so both login
        # failure paths do the same amount of work
        self._dummy_hash = self._hasher.hash("authgate-dummy-password")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordService":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, stored_hash: str, password: str) -> bool:
        """True when `password` matches `stored_hash` (Argon2 or legacy)."""
        if is_legacy_digest(stored_hash):
            computed = hashlib.sha256(password.encode("utf-8")).hexdigest()
            return hmac.compare_digest(computed, stored_hash.lower())
        try:
            return self._hasher.verify(stored_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        if is_legacy_digest(stored_hash):
            return True
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHashError:
            return True

    def burn(self, password: str) -> None:
        """Runs one verification that always fails."""
        self.verify(self._dummy_hash, password)

    # ── Async wrappers ────────────────────────────────────────────────────

    async def hash_async(self, password: str) -> str:
        return await run_in_threadpool(self.hash, password)

    async def verify_async(self, stored_hash: str, password: str) -> bool:
        return await run_in_threadpool(self.verify, stored_hash, password)

    async def burn_async(self, password: str) -> None:
        await run_in_threadpool(self.burn, password)
