"""Tests for password hashing."""

from amem.core.security import hash_password, verify_password


def test_hash_round_trip():
    hashed = hash_password("s3cret", iterations=1000)
    assert hashed.startswith("pbkdf2_sha256$1000$")
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)


def test_salted():
    """Test the same password hashes differently each time."""
    assert hash_password("pw", iterations=1000) != hash_password("pw", iterations=1000)


def test_malformed_hash():
    assert not verify_password("pw", "not-a-hash")
    assert not verify_password("pw", "md5$1$salt$digest")
