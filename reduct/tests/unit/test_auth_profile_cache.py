from __future__ import annotations

import json
from urllib.parse import parse_qs

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
import httpx
import jwt
import pytest

from reduct.core.errors import AuthProfileError, GoogleOAuthError
from reduct.domain.models import ProviderApiCredential, ProviderAuthProfile
from reduct.persistence.db import SessionLocal
from reduct.services.ai import auth_profiles
from reduct.services.crypto import encrypt_secret, sha256_hex
from reduct.services.system_tenant import ensure_system_tenant


TOKEN_URL = "https://oauth.test/token"


def _service_account() -> tuple[dict[str, str], rsa.RSAPublicKey]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return {"client_email": "svc@project.iam.test", "private_key": pem}, key.public_key()


async def _seed_profile(*, secret: str, auth_type: str, config: dict | None = None) -> str:
    async with SessionLocal() as session:
        tenant_id = await ensure_system_tenant(session)
        credential = ProviderApiCredential(
            tenant_id=tenant_id,
            provider_id="google",
            credential_name="vertex",
            api_key_encrypted=encrypt_secret(secret),
            api_key_hash=sha256_hex(secret),
            endpoint_url="https://vertex.test",
            is_active=True,
            is_default=True,
        )
        session.add(credential)
        await session.flush()
        profile = ProviderAuthProfile(
            tenant_id=tenant_id,
            provider_id="google",
            profile_key="vertex-sa",
            auth_type=auth_type,
            credential_id=credential.id,
            config=config or {},
            is_active=True,
        )
        session.add(profile)
        await session.commit()
        return profile.id


async def test_service_account_token_is_cached_until_refresh_window(monkeypatch: pytest.MonkeyPatch) -> None:
    service_account, public_key = _service_account()
    profile_id = await _seed_profile(
        secret=json.dumps(service_account),
        auth_type="oauth2_service_account",
        config={"token_url": TOKEN_URL, "scopes": ["scope-a"], "region": "us-central1", "stream": True},
    )
    calls: list[dict[str, list[str]]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(parse_qs(request.content.decode("utf-8")))
        return httpx.Response(200, json={"access_token": f"token-{len(calls)}", "expires_in": 3600})

    clock = {"now": 1_000_000}
    monkeypatch.setattr(auth_profiles, "_now_ms", lambda: clock["now"])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        async with SessionLocal() as session:
            first = await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="google", auth_profile_id=profile_id, client=client
            )
            second = await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="google", auth_profile_id=profile_id, client=client
            )
            assert first.access_token == "token-1"
            assert second.access_token == "token-1"
            assert len(calls) == 1

            # Still fresh one millisecond before the 30s refresh skew kicks in.
            clock["now"] = 1_000_000 + 3_600_000 - 30_001
            cached = await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="google", auth_profile_id=profile_id, client=client
            )
            assert cached.access_token == "token-1"

            clock["now"] = 1_000_000 + 3_600_000 - 30_000
            refreshed = await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="google", auth_profile_id=profile_id, client=client
            )
            assert refreshed.access_token == "token-2"
            assert len(calls) == 2

    assert first.endpoint_url == "https://vertex.test"
    assert first.config_vars == {"config_token_url": TOKEN_URL, "config_region": "us-central1", "config_stream": "true"}
    form = calls[0]
    assert form["grant_type"] == [auth_profiles.JWT_BEARER_GRANT]
    claims = jwt.decode(form["assertion"][0], public_key, algorithms=["RS256"], audience=TOKEN_URL)
    assert claims["iss"] == "svc@project.iam.test"
    assert claims["scope"] == "scope-a"


async def test_api_key_profile_returns_decrypted_key() -> None:
    profile_id = await _seed_profile(secret="sk-live-1234", auth_type="api_key")
    async with SessionLocal() as session:
        resolved = await auth_profiles.resolve_auth_for_model_api_profile(
            session, provider_id="google", auth_profile_id=profile_id
        )
    assert resolved.api_key == "sk-live-1234"
    assert resolved.access_token is None


async def test_default_credential_used_without_profile() -> None:
    await _seed_profile(secret="sk-default", auth_type="api_key")
    async with SessionLocal() as session:
        resolved = await auth_profiles.resolve_auth_for_model_api_profile(
            session, provider_id="google", auth_profile_id=None
        )
        assert resolved.api_key == "sk-default"
        with pytest.raises(AuthProfileError, match="NO_ACTIVE_CREDENTIAL"):
            await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="openai", auth_profile_id=None
            )


async def test_provider_mismatch_and_unknown_profile_fail() -> None:
    profile_id = await _seed_profile(secret="sk", auth_type="api_key")
    async with SessionLocal() as session:
        with pytest.raises(AuthProfileError, match="AUTH_PROFILE_PROVIDER_MISMATCH"):
            await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="openai", auth_profile_id=profile_id
            )
        with pytest.raises(AuthProfileError, match="AUTH_PROFILE_NOT_FOUND_OR_INACTIVE"):
            await auth_profiles.resolve_auth_for_model_api_profile(
                session, provider_id="google", auth_profile_id="missing"
            )


async def test_token_endpoint_failure_raises_google_oauth_error() -> None:
    service_account, _public_key = _service_account()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(GoogleOAuthError, match="GOOGLE_OAUTH_TOKEN_FAILED_400"):
            await auth_profiles.fetch_google_access_token(
                service_account=service_account, scopes=[], token_url=TOKEN_URL, client=client
            )


async def test_service_account_without_key_is_rejected() -> None:
    with pytest.raises(GoogleOAuthError, match="SERVICE_ACCOUNT_PRIVATE_KEY_OR_CLIENT_EMAIL_MISSING"):
        await auth_profiles.fetch_google_access_token(
            service_account={"client_email": "x@y"}, scopes=[], token_url=TOKEN_URL
        )
