from __future__ import annotations

import pytest

from reduct.core.errors import EncryptedFormatError
from reduct.services.crypto import decrypt_secret, encrypt_secret, mask_secret, sha256_hex


def test_encrypted_token_has_three_parts_and_decrypts() -> None:
    token = encrypt_secret("sk-test-abcdef")
    assert token.count(".") == 2
    assert decrypt_secret(token) == "sk-test-abcdef"
    # Fresh IV per call.
    assert encrypt_secret("sk-test-abcdef") != token


def test_wrong_secret_and_malformed_tokens_are_rejected() -> None:
    token = encrypt_secret("value", secret="one")
    with pytest.raises(EncryptedFormatError):
        decrypt_secret(token, secret="two")
    for bad in ("", "a.b", "not.base64!.x", "AAAA.AAAA.AAAA"):
        with pytest.raises(EncryptedFormatError):
            decrypt_secret(bad)


def test_mask_and_hash() -> None:
    assert mask_secret("sk-1234567890abcd") == "************abcd"
    assert mask_secret("abc") == "***"
    assert sha256_hex("x") == "2d711642b726b04401627ca9fbac32f5c8530fb1903cc4db02258717921a4881"
