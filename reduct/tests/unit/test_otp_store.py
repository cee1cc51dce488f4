from __future__ import annotations

import pytest

from reduct.services.auth import otp


async def test_code_matches_case_insensitive_email() -> None:
    await otp.store_code("User@Example.com", "123456")
    await otp.check_code("user@example.com ", "123456")
    # Checking does not consume the code.
    assert await otp.get_entry("user@example.com") is not None


async def test_mismatched_code_is_rejected() -> None:
    await otp.store_code("a@example.com", "123456")
    with pytest.raises(otp.OtpVerificationError, match="Invalid verification code"):
        await otp.check_code("a@example.com", "654321")


async def test_missing_code_is_rejected() -> None:
    with pytest.raises(otp.OtpVerificationError, match="No verification code found"):
        await otp.check_code("nobody@example.com", "123456")


async def test_expired_code_is_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    await otp.store_code("b@example.com", "111111", ttl_seconds=180)
    entry = await otp.get_entry("b@example.com")
    monkeypatch.setattr(otp, "_now", lambda: entry.expires_at + 1)
    with pytest.raises(otp.OtpVerificationError, match="expired"):
        await otp.check_code("b@example.com", "111111")
    assert await otp.get_entry("b@example.com") is None


def test_generated_codes_are_six_digits() -> None:
    for _ in range(50):
        code = otp.generate_code()
        assert len(code) == 6
        assert code.isdigit()
        assert code[0] != "0"


async def test_storing_a_code_prunes_long_expired_entries(monkeypatch: pytest.MonkeyPatch) -> None:
    await otp.store_code("old@example.com", "222222", ttl_seconds=60)
    await otp.store_code("recent@example.com", "333333", ttl_seconds=60)
    stale = await otp.get_entry("old@example.com")
    monkeypatch.setattr(otp, "_now", lambda: stale.expires_at + otp._REDIS_GRACE_SECONDS + 1)
    await otp.store_code("new@example.com", "444444")
    assert await otp.get_entry("old@example.com") is None
    assert await otp.get_entry("recent@example.com") is None
    assert await otp.get_entry("new@example.com") is not None


async def test_recently_expired_entry_survives_pruning(monkeypatch: pytest.MonkeyPatch) -> None:
    await otp.store_code("c@example.com", "555555", ttl_seconds=60)
    entry = await otp.get_entry("c@example.com")
    monkeypatch.setattr(otp, "_now", lambda: entry.expires_at + 5)
    await otp.store_code("d@example.com", "666666")
    with pytest.raises(otp.OtpVerificationError, match="expired"):
        await otp.check_code("c@example.com", "555555")
