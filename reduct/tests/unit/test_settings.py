from __future__ import annotations

from reduct.core.config import SERVICE_NAMES, Settings


def test_enabled_services_default_to_all() -> None:
    assert Settings(enabled_services="").enabled_service_set() == set(SERVICE_NAMES)


def test_enabled_services_ignore_unknown_names() -> None:
    settings = Settings(enabled_services="Auth, billing ,bogus")
    assert settings.enabled_service_set() == {"auth", "billing"}
