from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from reduct.core.config import get_settings
from reduct.core.errors import EncryptedFormatError


_IV_BYTES = 12
_TAG_BYTES = 16


def _key(secret: str | None = None) -> bytes:
    # Derive a 256-bit key from the configured secret.
    raw = secret if secret is not None else get_settings().credential_encryption_secret
    return hashlib.sha256(raw.encode("utf-8")).digest()


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def encrypt_secret(plaintext: str, *, secret: str | None = None) -> str:
    """Encrypt ``plaintext`` into an ``iv.tag.ciphertext`` token (base64 parts)."""
    iv = os.urandom(_IV_BYTES)
    # AESGCM appends the tag to the ciphertext; store it as its own segment.
    sealed = AESGCM(_key(secret)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return f"{_b64(iv)}.{_b64(tag)}.{_b64(ciphertext)}"


def decrypt_secret(token: str, *, secret: str | None = None) -> str:
    parts = str(token or "").split(".")
    if len(parts) != 3:
        raise EncryptedFormatError("INVALID_ENCRYPTED_FORMAT")
    try:
        iv, tag, ciphertext = (base64.b64decode(part, validate=True) for part in parts)
    except (binascii.Error, ValueError) as exc:
        raise EncryptedFormatError("INVALID_ENCRYPTED_FORMAT") from exc
    if len(iv) != _IV_BYTES or len(tag) != _TAG_BYTES:
        raise EncryptedFormatError("INVALID_ENCRYPTED_FORMAT")
    try:
        plaintext = AESGCM(_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise EncryptedFormatError("INVALID_ENCRYPTED_FORMAT") from exc
    return plaintext.decode("utf-8")


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def mask_secret(value: str) -> str:
    # Keep only the last four characters visible for admin listings.
    if len(value) <= 4:
        return "*" * len(value)
    return f"{'*' * min(len(value) - 4, 12)}{value[-4:]}"
