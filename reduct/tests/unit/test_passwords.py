from __future__ import annotations

from reduct.services.auth.passwords import hash_password, validate_password, verify_password


def test_hash_verifies_only_matching_password() -> None:
    hashed = hash_password("Passw0rd!")
    assert hashed.startswith("$2b$10$")
    assert verify_password("Passw0rd!", hashed)
    assert not verify_password("passw0rd!", hashed)


def test_missing_or_corrupt_hash_never_matches() -> None:
    assert not verify_password("anything", None)
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_password_policy_messages() -> None:
    assert validate_password("short1!") == "Password must be at least 8 characters long"
    assert validate_password("12345678!") == "Password must contain at least one letter"
    assert validate_password("abcdefgh!") == "Password must contain at least one number"
    assert validate_password("abcdefg1") == "Password must contain at least one special character"
    assert validate_password("abcdefg1!") is None
