from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
import re
import time
from typing import Any

import httpx
import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.core.config import get_settings
from reduct.core.errors import AuthProfileError, GoogleOAuthError
from reduct.domain.models import ProviderApiCredential, ProviderAuthProfile
from reduct.services.crypto import decrypt_secret
from reduct.services.system_tenant import ensure_system_tenant


logger = logging.getLogger(__name__)

AUTH_TYPES = ("api_key", "oauth2_service_account", "aws_sigv4", "azure_ad")
DEFAULT_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
# Cached tokens are treated as stale this long before their real expiry.
TOKEN_REFRESH_SKEW_MS = 30_000

_CONFIG_KEY_UNSAFE = re.compile(r"[^a-zA-Z0-9_]")


@dataclass(frozen=True)
class CachedAccessToken:
    access_token: str
    expires_at_ms: int


@dataclass(frozen=True)
class ResolvedAuth:
    credential_id: str
    api_key: str
    access_token: str | None
    endpoint_url: str | None
    organization_id: str | None
    config_vars: dict[str, str] = field(default_factory=dict)


# Process-local; each API replica keeps its own token cache.
_access_token_cache: dict[str, CachedAccessToken] = {}
_cache_lock = asyncio.Lock()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str) and item]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _safe_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def build_config_vars(config: dict[str, Any] | None) -> dict[str, str]:
    """Expose primitive profile config values as ``config_<key>`` template vars."""
    result: dict[str, str] = {}
    for key, value in (config or {}).items():
        if isinstance(value, bool):
            # Match JSON spelling for template substitution.
            result_value = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            result_value = str(value)
        else:
            continue
        safe_key = _CONFIG_KEY_UNSAFE.sub("_", str(key))
        if not safe_key:
            continue
        result[f"config_{safe_key}"] = result_value
    return result


async def get_cached_token(cache_key: str) -> CachedAccessToken | None:
    async with _cache_lock:
        entry = _access_token_cache.get(cache_key)
    if entry is None or entry.expires_at_ms - TOKEN_REFRESH_SKEW_MS <= _now_ms():
        return None
    return entry


async def set_cached_token(cache_key: str, entry: CachedAccessToken) -> None:
    async with _cache_lock:
        _access_token_cache[cache_key] = entry


async def clear_token_cache() -> None:
    async with _cache_lock:
        _access_token_cache.clear()


async def fetch_google_access_token(
    *,
    service_account: dict[str, Any],
    scopes: list[str],
    token_url: str,
    audience: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> tuple[str, int]:
    """Exchange a signed service-account assertion for an access token.

    Returns ``(access_token, expires_in_seconds)``.
    """
    private_key = _as_str(service_account.get("private_key"))
    client_email = _as_str(service_account.get("client_email"))
    if not private_key or not client_email:
        raise GoogleOAuthError("SERVICE_ACCOUNT_PRIVATE_KEY_OR_CLIENT_EMAIL_MISSING")

    issued_at = int(time.time())
    claims = {
        "iss": client_email,
        "scope": " ".join(scopes or [DEFAULT_SCOPE]),
        "aud": audience or token_url,
        "iat": issued_at,
        "exp": issued_at + 3600,
    }
    assertion = jwt.encode(claims, private_key, algorithm="RS256", headers={"typ": "JWT"})
    form = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}

    if client is None:
        async with httpx.AsyncClient(timeout=10.0) as owned_client:
            response = await owned_client.post(token_url, data=form)
    else:
        response = await client.post(token_url, data=form)

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if response.status_code >= 400:
        logger.warning("google_oauth_token_failed status=%s client_email=%s", response.status_code, client_email)
        raise GoogleOAuthError(
            f"GOOGLE_OAUTH_TOKEN_FAILED_{response.status_code}:{json.dumps(payload, separators=(',', ':'))}"
        )
    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not isinstance(access_token, str) or not access_token:
        raise GoogleOAuthError("GOOGLE_OAUTH_TOKEN_MISSING_ACCESS_TOKEN")
    try:
        expires_in = int(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        expires_in = 0
    return access_token, expires_in or 3600


async def _load_default_credential(
    session: AsyncSession, *, tenant_id: str, provider_id: str
) -> ProviderApiCredential | None:
    result = await session.execute(
        select(ProviderApiCredential)
        .where(
            ProviderApiCredential.tenant_id == tenant_id,
            ProviderApiCredential.provider_id == provider_id,
            ProviderApiCredential.is_active.is_(True),
        )
        .order_by(ProviderApiCredential.is_default.desc(), ProviderApiCredential.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_auth_for_model_api_profile(
    session: AsyncSession,
    *,
    provider_id: str,
    auth_profile_id: str | None,
    client: httpx.AsyncClient | None = None,
) -> ResolvedAuth:
    """Resolve upstream credentials for a provider call.

    Without a profile the provider's default active credential is used. With a
    profile, its auth type decides between the raw API key and a Google
    service-account access token (cached until 30s before expiry).
    """
    tenant_id = await ensure_system_tenant(session)

    if not auth_profile_id:
        credential = await _load_default_credential(session, tenant_id=tenant_id, provider_id=provider_id)
        if credential is None:
            raise AuthProfileError("NO_ACTIVE_CREDENTIAL")
        return ResolvedAuth(
            credential_id=credential.id,
            api_key=decrypt_secret(credential.api_key_encrypted),
            access_token=None,
            endpoint_url=credential.endpoint_url or None,
            organization_id=credential.organization_id or None,
        )

    profile = (
        await session.execute(
            select(ProviderAuthProfile).where(
                ProviderAuthProfile.tenant_id == tenant_id,
                ProviderAuthProfile.id == auth_profile_id,
                ProviderAuthProfile.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()
    if profile is None:
        raise AuthProfileError("AUTH_PROFILE_NOT_FOUND_OR_INACTIVE")
    if profile.provider_id != provider_id:
        raise AuthProfileError("AUTH_PROFILE_PROVIDER_MISMATCH")

    credential = (
        await session.execute(
            select(ProviderApiCredential).where(
                ProviderApiCredential.tenant_id == tenant_id,
                ProviderApiCredential.id == profile.credential_id,
                ProviderApiCredential.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()
    if credential is None:
        raise AuthProfileError("NO_ACTIVE_CREDENTIAL_FOR_AUTH_PROFILE")
    secret = decrypt_secret(credential.api_key_encrypted)
    config = _safe_dict(profile.config)
    config_vars = build_config_vars(config)

    def _resolved(access_token: str | None) -> ResolvedAuth:
        return ResolvedAuth(
            credential_id=credential.id,
            api_key=secret,
            access_token=access_token,
            endpoint_url=credential.endpoint_url or None,
            organization_id=credential.organization_id or None,
            config_vars=config_vars,
        )

    if profile.auth_type == "api_key":
        return _resolved(None)

    if profile.auth_type == "oauth2_service_account":
        try:
            service_account = _safe_dict(json.loads(secret))
        except ValueError as exc:
            raise AuthProfileError("SERVICE_ACCOUNT_JSON_INVALID") from exc
        token_url = _as_str(config.get("token_url")) or get_settings().google_token_url
        scopes = _as_str_list(config.get("scopes"))
        audience = _as_str(config.get("audience")) or token_url

        cache_key = profile.token_cache_key or f"auth:{tenant_id}:{profile.id}"
        cached = await get_cached_token(cache_key)
        if cached is not None:
            return _resolved(cached.access_token)

        started_ms = _now_ms()
        access_token, expires_in = await fetch_google_access_token(
            service_account=service_account,
            scopes=scopes,
            token_url=token_url,
            audience=audience,
            client=client,
        )
        expires_at_ms = started_ms + max(60, expires_in) * 1000
        await set_cached_token(cache_key, CachedAccessToken(access_token=access_token, expires_at_ms=expires_at_ms))
        logger.info("google_access_token_refreshed profile_id=%s expires_in=%s", profile.id, expires_in)
        return _resolved(access_token)

    raise AuthProfileError(f"AUTH_TYPE_NOT_IMPLEMENTED:{profile.auth_type}")
