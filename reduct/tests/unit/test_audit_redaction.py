from __future__ import annotations

from reduct.services.audit import sanitize_metadata


def test_audit_redacts_credentials_and_codes() -> None:
    payload = {
        "api_key": "sk-live",
        "access_token": "secret-access",
        "new_password": "Passw0rd!",
        "code": "123456",
        "country_code": "KR",
        "nested": [{"Authorization": "Bearer abc", "email": "a@example.com"}],
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["access_token"] == "[REDACTED]"
    assert sanitized["new_password"] == "[REDACTED]"
    assert sanitized["code"] == "[REDACTED]"
    assert sanitized["country_code"] == "KR"
    assert sanitized["nested"] == [{"Authorization": "[REDACTED]", "email": "a@example.com"}]
