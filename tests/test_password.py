"""
AuthGate — Password Hashing Tests
===================================

What we test:
    ✅ Argon2id hashes are salted and verify
    ✅ Legacy SHA-256 digests verify and are flagged for rehash
    ✅ Garbage stored hashes never verify
"""

import hashlib

import pytest

from authgate.services.password import PasswordService, is_legacy_digest


class TestArgon2:

    def test_hash_is_salted(self, passwords):
        first = passwords.hash("pw")
        second = passwords.hash("pw")
        assert first != second
        assert first.startswith("$argon2id$")

    def test_verify(self, passwords):
        stored = passwords.hash("correct horse")
        assert passwords.verify(stored, "correct horse") is True
        assert passwords.verify(stored, "battery staple") is False

    def test_current_hash_needs_no_rehash(self, passwords):
        assert passwords.needs_rehash(passwords.hash("pw")) is False

    def test_outdated_parameters_need_rehash(self, passwords):
        stronger = PasswordService(time_cost=2, memory_cost=16, parallelism=1)
        assert stronger.needs_rehash(passwords.hash("pw")) is True

    def test_invalid_stored_hash(self, passwords):
        assert passwords.verify("not-a-hash", "pw") is False
        assert passwords.needs_rehash("not-a-hash") is True

    def test_burn_does_not_raise(self, passwords):
        passwords.burn("anything")

    @pytest.mark.asyncio
    async def test_async_wrappers(self, passwords):
        stored = await passwords.hash_async("pw")
        assert await passwords.verify_async(stored, "pw") is True
        await passwords.burn_async("pw")


class TestLegacyDigest:

    def test_detection(self):
        assert is_legacy_digest(hashlib.sha256(b"x").hexdigest())
        assert not is_legacy_digest("$argon2id$v=19$m=8,t=1,p=1$abc$def")
        assert not is_legacy_digest("abc")

    def test_verify_and_rehash_flag(self, passwords):
        legacy = hashlib.sha256(b"old").hexdigest()
        assert passwords.verify(legacy, "old") is True
        assert passwords.verify(legacy.upper(), "old") is True
        assert passwords.verify(legacy, "new") is False
        assert passwords.needs_rehash(legacy) is True
