"""Tests for backup code hashing."""

from backend.app.security.hashing import CodeHasher


def test_hash_and_verify():
    hasher = CodeHasher()
    hashed = hasher.hash("aB3dE5gH7jK9mN1p")
    assert hashed != "aB3dE5gH7jK9mN1p"
    assert hashed.startswith("$pbkdf2-sha256$")
    assert hasher.verify("aB3dE5gH7jK9mN1p", hashed)
    assert not hasher.verify("aB3dE5gH7jK9mN1q", hashed)


def test_hash_is_salted():
    hasher = CodeHasher()
    assert hasher.hash("aB3dE5gH7jK9mN1p") != hasher.hash("aB3dE5gH7jK9mN1p")


def test_malformed_hash_does_not_raise():
    assert CodeHasher().verify("aB3dE5gH7jK9mN1p", "not-a-hash") is False
