"""Password hashing tests."""
import hashlib

from werkzeug.security import generate_password_hash

from database.passwords import hash_password, is_hashed, needs_rehash, verify_password


class TestPasswords:

    def test_hash_is_salted(self):
        first = hash_password("secret")
        second = hash_password("secret")
        assert first != second
        assert is_hashed(first)
        assert not needs_rehash(first)
        assert verify_password("secret", first)
        assert verify_password("secret", second)
        assert not verify_password("other", first)

    def test_pbkdf2_rows_verify(self):
        stored = generate_password_hash("secret", method="pbkdf2:sha256")
        assert is_hashed(stored)
        assert verify_password("secret", stored)
        assert not verify_password("secret2", stored)

    def test_legacy_plaintext(self):
        assert verify_password("admin123", "admin123")
        assert not verify_password("admin124", "admin123")
        assert needs_rehash("admin123")

    def test_legacy_sha256(self):
        stored = hashlib.sha256(b"secret").hexdigest()
        assert verify_password("secret", stored)
        assert not verify_password("secret2", stored)
        assert needs_rehash(stored)

    def test_empty_stored_never_matches(self):
        assert not verify_password("", "")
        assert not verify_password("x", None)

    def test_non_string_password(self):
        assert not verify_password(123456, "123456")
        assert not verify_password(None, hash_password("secret"))

    def test_corrupt_hash(self):
        assert not verify_password("secret", "pbkdf2:sha256:abc$zz$yy")
        assert not verify_password("secret", "pbkdf2:sha256")
