"""
Tests for bcrypt password hashing.
"""

from __future__ import annotations

import pytest

from plume_rpc.passwords import BcryptPasswordHasher


@pytest.fixture
def bcrypt_hasher() -> BcryptPasswordHasher:
    """Low-cost hasher so the suite stays quick."""
    return BcryptPasswordHasher(rounds=4)


class TestBcryptPasswordHasher:
    """Tests for BcryptPasswordHasher."""

    def test_hash_is_not_plaintext(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test the stored form never contains the password."""
        password_hash = bcrypt_hasher.hash_password("hunter22")

        assert "hunter22" not in password_hash
        assert password_hash.startswith("$2")

    def test_hashes_are_salted(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test equal passwords hash differently."""
        assert bcrypt_hasher.hash_password("pw1") != bcrypt_hasher.hash_password("pw1")

    def test_verify_matching_password(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test the right password verifies."""
        password_hash = bcrypt_hasher.hash_password("pw1")

        assert bcrypt_hasher.verify_password(password="pw1", password_hash=password_hash)

    def test_verify_wrong_password(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test the wrong password does not verify."""
        password_hash = bcrypt_hasher.hash_password("pw1")

        assert not bcrypt_hasher.verify_password(password="pw2", password_hash=password_hash)

    def test_verify_garbage_hash(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test a malformed stored hash fails verification instead of raising."""
        assert not bcrypt_hasher.verify_password(password="pw1", password_hash="not-a-hash")

    def test_long_passwords(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test passwords over bcrypt's input limit are accepted."""
        password = "x" * 128
        password_hash = bcrypt_hasher.hash_password(password)

        assert bcrypt_hasher.verify_password(password=password, password_hash=password_hash)

    def test_unicode_passwords(self, bcrypt_hasher: BcryptPasswordHasher) -> None:
        """Test non-ASCII passwords round through hashing."""
        password_hash = bcrypt_hasher.hash_password("pässwörd")

        assert bcrypt_hasher.verify_password(password="pässwörd", password_hash=password_hash)
        assert not bcrypt_hasher.verify_password(password="passwort", password_hash=password_hash)
