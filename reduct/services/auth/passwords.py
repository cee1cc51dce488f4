from __future__ import annotations

import re

import bcrypt


_BCRYPT_ROUNDS = 10
_LETTER = re.compile(r"[A-Za-z]")
_DIGIT = re.compile(r"\d")
_SPECIAL = re.compile(r"[^A-Za-z0-9]")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    # SSO-only users have no hash and can never match.
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def validate_password(password: str) -> str | None:
    """Return a user-facing error for weak passwords, or None when acceptable."""
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not _LETTER.search(password):
        return "Password must contain at least one letter"
    if not _DIGIT.search(password):
        return "Password must contain at least one number"
    if not _SPECIAL.search(password):
        return "Password must contain at least one special character"
    return None
