from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.core.config import get_settings
from reduct.core.errors import AuthProfileError, EncryptedFormatError, GoogleOAuthError
from reduct.domain.models import ProviderApiCredential, ProviderAuthProfile
from reduct.services.ai.auth_profiles import AUTH_TYPES, resolve_auth_for_model_api_profile
from reduct.services.ai.serper import serper_search
from reduct.services.ai.web_search import get_policy, upsert_policy
from reduct.services.audit import record_event
from reduct.services.crypto import encrypt_secret, mask_secret, sha256_hex
from reduct.services.system_tenant import ensure_system_tenant


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"], responses=DEFAULT_ERROR_RESPONSES)


class CredentialCreateRequest(BaseModel):
    provider_id: str | None = None
    credential_name: str | None = None
    api_key: str | None = None
    endpoint_url: str | None = None
    organization_id: str | None = None
    is_active: bool = True
    is_default: bool = False
    rate_limit_rpm: int | None = None
    rate_limit_tpm: int | None = None
    metadata: dict[str, Any] | None = None
    expires_at: datetime | None = None


class CredentialUpdateRequest(BaseModel):
    credential_name: str | None = None
    api_key: str | None = None
    endpoint_url: str | None = None
    organization_id: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    rate_limit_rpm: int | None = None
    rate_limit_tpm: int | None = None
    metadata: dict[str, Any] | None = None
    expires_at: datetime | None = None


class AuthProfileCreateRequest(BaseModel):
    provider_id: str | None = None
    profile_key: str | None = None
    auth_type: str | None = None
    credential_id: str | None = None
    config: dict[str, Any] | None = None
    token_cache_key: str | None = None
    is_active: bool = True


class AuthProfileUpdateRequest(BaseModel):
    profile_key: str | None = None
    auth_type: str | None = None
    credential_id: str | None = None
    config: dict[str, Any] | None = None
    token_cache_key: str | None = None
    is_active: bool | None = None


class AuthResolveRequest(BaseModel):
    provider_id: str
    auth_profile_id: str | None = None


class WebSearchSettingsRequest(BaseModel):
    enabled: bool | None = None
    default_allowed: bool | None = None
    provider: str | None = None
    enabled_providers: list[str] | None = None
    max_search_calls: int | None = None
    max_total_snippet_tokens: int | None = None
    timeout_ms: int | None = None
    retry_max: int | None = None
    retry_base_delay_ms: int | None = None
    retry_max_delay_ms: int | None = None


class WebSearchRequest(BaseModel):
    query: str
    country: str | None = None
    language: str | None = None
    limit: int | None = None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _credential_payload(row: ProviderApiCredential) -> dict[str, Any]:
    metadata = dict(row.metadata_json or {})
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "provider_id": row.provider_id,
        "credential_name": row.credential_name,
        "api_key_masked": metadata.get("api_key_masked"),
        "api_key_last4": metadata.get("api_key_last4"),
        "endpoint_url": row.endpoint_url,
        "organization_id": row.organization_id,
        "is_active": row.is_active,
        "is_default": row.is_default,
        "rate_limit_rpm": row.rate_limit_rpm,
        "rate_limit_tpm": row.rate_limit_tpm,
        "metadata": metadata,
        "expires_at": iso(row.expires_at),
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _profile_payload(row: ProviderAuthProfile) -> dict[str, Any]:
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "provider_id": row.provider_id,
        "profile_key": row.profile_key,
        "auth_type": row.auth_type,
        "credential_id": row.credential_id,
        "config": row.config or {},
        "token_cache_key": row.token_cache_key,
        "is_active": row.is_active,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _store_api_key(row: ProviderApiCredential, api_key: str) -> None:
    # Only ciphertext, hash and a masked hint are persisted.
    row.api_key_encrypted = encrypt_secret(api_key)
    row.api_key_hash = sha256_hex(api_key)
    metadata = dict(row.metadata_json or {})
    metadata["api_key_last4"] = api_key[-4:]
    metadata["api_key_masked"] = mask_secret(api_key)
    row.metadata_json = metadata


async def _unset_other_defaults(db: AsyncSession, row: ProviderApiCredential) -> None:
    await db.execute(
        update(ProviderApiCredential)
        .where(
            ProviderApiCredential.tenant_id == row.tenant_id,
            ProviderApiCredential.provider_id == row.provider_id,
            ProviderApiCredential.id != row.id,
        )
        .values(is_default=False)
    )


async def _get_credential(db: AsyncSession, tenant_id: str, credential_id: str) -> ProviderApiCredential:
    row = (
        await db.execute(
            select(ProviderApiCredential).where(
                ProviderApiCredential.tenant_id == tenant_id,
                ProviderApiCredential.id == credential_id,
            )
        )
    ).scalar_one_or_none()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "CREDENTIAL_NOT_FOUND", "message": "Credential not found"},
        )
    return row


async def _get_profile(db: AsyncSession, tenant_id: str, profile_id: str) -> ProviderAuthProfile:
    row = (
        await db.execute(
            select(ProviderAuthProfile).where(
                ProviderAuthProfile.tenant_id == tenant_id,
                ProviderAuthProfile.id == profile_id,
            )
        )
    ).scalar_one_or_none()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "AUTH_PROFILE_NOT_FOUND", "message": "Auth profile not found"},
        )
    return row


async def _commit_credential(db: AsyncSession, row: ProviderApiCredential) -> None:
    try:
        if row.is_default:
            await db.flush()
            await _unset_other_defaults(db, row)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "CREDENTIAL_EXISTS",
                "message": "Duplicate credential_name for the same tenant/provider",
            },
        ) from exc
    except Exception:
        await db.rollback()
        raise


async def _audit_credential(
    db: AsyncSession, request: Request, admin: Principal, tenant_id: str, event_type: str, credential_id: str
) -> None:
    await record_event(
        session=db,
        request=request,
        tenant_id=tenant_id,
        actor_type="user",
        actor_id=admin.user_id,
        actor_role=admin.platform_role,
        event_type=event_type,
        outcome="success",
        resource_type="provider_credential",
        resource_id=credential_id,
        commit=True,
    )


@router.get("/credentials", response_model=SuccessEnvelope[list[dict]])
async def list_credentials(
    request: Request,
    provider_id: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    query = select(ProviderApiCredential).where(ProviderApiCredential.tenant_id == tenant_id)
    if provider_id:
        query = query.where(ProviderApiCredential.provider_id == provider_id)
    query = query.order_by(ProviderApiCredential.provider_id, ProviderApiCredential.created_at.desc())
    rows = (await db.execute(query)).scalars().all()
    return success_response(request=request, data=[_credential_payload(row) for row in rows])


@router.get("/credentials/{credential_id}", response_model=SuccessEnvelope[dict])
async def get_credential(
    request: Request,
    credential_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_credential(db, tenant_id, credential_id)
    return success_response(request=request, data=_credential_payload(row))


@router.post("/credentials", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_credential(
    request: Request,
    payload: CredentialCreateRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    provider_id = (payload.provider_id or "").strip()
    credential_name = (payload.credential_name or "").strip()
    api_key = (payload.api_key or "").strip()
    if not provider_id or not credential_name or not api_key:
        raise _bad_request("CREDENTIAL_FIELDS_REQUIRED", "provider_id, credential_name, api_key are required")

    tenant_id = await ensure_system_tenant(db)
    row = ProviderApiCredential(
        tenant_id=tenant_id,
        provider_id=provider_id,
        credential_name=credential_name,
        endpoint_url=payload.endpoint_url,
        organization_id=payload.organization_id,
        is_active=payload.is_active,
        is_default=payload.is_default,
        rate_limit_rpm=payload.rate_limit_rpm,
        rate_limit_tpm=payload.rate_limit_tpm,
        metadata_json=dict(payload.metadata or {}),
        expires_at=payload.expires_at,
    )
    _store_api_key(row, api_key)
    db.add(row)
    await _commit_credential(db, row)
    logger.info("provider_credential_created credential_id=%s provider_id=%s", row.id, provider_id)
    await _audit_credential(db, request, admin, tenant_id, "ai.credential.created", row.id)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_credential_payload(row)),
    )


@router.put("/credentials/{credential_id}", response_model=SuccessEnvelope[dict])
async def update_credential(
    request: Request,
    credential_id: str,
    payload: CredentialUpdateRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_credential(db, tenant_id, credential_id)
    patch = payload.model_dump(exclude_unset=True)

    if "metadata" in patch:
        # Keep the stored key hint when callers replace metadata.
        hints = {k: v for k, v in (row.metadata_json or {}).items() if k.startswith("api_key_")}
        row.metadata_json = {**dict(patch.pop("metadata") or {}), **hints}
    api_key = (patch.pop("api_key", None) or "").strip()
    if api_key:
        _store_api_key(row, api_key)
    if "credential_name" in patch:
        name = (patch.pop("credential_name") or "").strip()
        if not name:
            raise _bad_request("CREDENTIAL_FIELDS_REQUIRED", "credential_name cannot be empty")
        row.credential_name = name
    for key, value in patch.items():
        if key in ("is_active", "is_default") and value is None:
            continue
        setattr(row, key, value)

    await _commit_credential(db, row)
    await _audit_credential(db, request, admin, tenant_id, "ai.credential.updated", row.id)
    return success_response(request=request, data=_credential_payload(row))


@router.delete("/credentials/{credential_id}", response_model=SuccessEnvelope[dict])
async def delete_credential(
    request: Request,
    credential_id: str,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_credential(db, tenant_id, credential_id)
    try:
        await db.execute(delete(ProviderAuthProfile).where(ProviderAuthProfile.credential_id == row.id))
        await db.delete(row)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await _audit_credential(db, request, admin, tenant_id, "ai.credential.deleted", credential_id)
    return success_response(request=request, data={"ok": True, "id": credential_id})


def _validate_auth_type(auth_type: str) -> str:
    value = auth_type.strip()
    if value not in AUTH_TYPES:
        raise _bad_request("INVALID_AUTH_TYPE", f"auth_type must be one of {', '.join(AUTH_TYPES)}")
    return value


async def _commit_profile(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "AUTH_PROFILE_EXISTS", "message": "Duplicate profile_key for the same tenant/provider"},
        ) from exc


@router.get("/auth-profiles", response_model=SuccessEnvelope[list[dict]])
async def list_auth_profiles(
    request: Request,
    provider_id: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    query = select(ProviderAuthProfile).where(ProviderAuthProfile.tenant_id == tenant_id)
    if provider_id:
        query = query.where(ProviderAuthProfile.provider_id == provider_id)
    rows = (await db.execute(query.order_by(ProviderAuthProfile.provider_id, ProviderAuthProfile.profile_key))).scalars()
    return success_response(request=request, data=[_profile_payload(row) for row in rows.all()])


@router.get("/auth-profiles/{profile_id}", response_model=SuccessEnvelope[dict])
async def get_auth_profile(
    request: Request,
    profile_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    return success_response(request=request, data=_profile_payload(await _get_profile(db, tenant_id, profile_id)))


@router.post("/auth-profiles", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_auth_profile(
    request: Request,
    payload: AuthProfileCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    provider_id = (payload.provider_id or "").strip()
    profile_key = (payload.profile_key or "").strip()
    if not provider_id or not profile_key or not payload.auth_type or not payload.credential_id:
        raise _bad_request(
            "AUTH_PROFILE_FIELDS_REQUIRED", "provider_id, profile_key, auth_type, credential_id are required"
        )
    auth_type = _validate_auth_type(payload.auth_type)
    tenant_id = await ensure_system_tenant(db)
    credential = await _get_credential(db, tenant_id, payload.credential_id)
    if credential.provider_id != provider_id:
        raise _bad_request("CREDENTIAL_PROVIDER_MISMATCH", "credential belongs to a different provider")

    row = ProviderAuthProfile(
        tenant_id=tenant_id,
        provider_id=provider_id,
        profile_key=profile_key,
        auth_type=auth_type,
        credential_id=credential.id,
        config=dict(payload.config or {}),
        token_cache_key=payload.token_cache_key,
        is_active=payload.is_active,
    )
    db.add(row)
    await _commit_profile(db)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_profile_payload(row)),
    )


@router.put("/auth-profiles/{profile_id}", response_model=SuccessEnvelope[dict])
async def update_auth_profile(
    request: Request,
    profile_id: str,
    payload: AuthProfileUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_profile(db, tenant_id, profile_id)
    patch = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if "auth_type" in patch:
        patch["auth_type"] = _validate_auth_type(patch["auth_type"])
    if "credential_id" in patch:
        credential = await _get_credential(db, tenant_id, patch["credential_id"])
        if credential.provider_id != row.provider_id:
            raise _bad_request("CREDENTIAL_PROVIDER_MISMATCH", "credential belongs to a different provider")
    for key, value in patch.items():
        setattr(row, key, value)
    await _commit_profile(db)
    return success_response(request=request, data=_profile_payload(row))


@router.delete("/auth-profiles/{profile_id}", response_model=SuccessEnvelope[dict])
async def delete_auth_profile(
    request: Request,
    profile_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_profile(db, tenant_id, profile_id)
    await db.delete(row)
    await db.commit()
    return success_response(request=request, data={"ok": True, "id": profile_id})


@router.post("/auth/resolve", response_model=SuccessEnvelope[dict])
async def resolve_auth(
    request: Request,
    payload: AuthResolveRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Dry-run credential resolution for a provider; secrets are masked in the response."""
    try:
        resolved = await resolve_auth_for_model_api_profile(
            db, provider_id=payload.provider_id, auth_profile_id=payload.auth_profile_id
        )
    except GoogleOAuthError:
        # Token endpoint failures are upstream errors.
        raise
    except (AuthProfileError, EncryptedFormatError) as exc:
        raise _bad_request("AUTH_RESOLVE_FAILED", str(exc)) from exc
    return success_response(
        request=request,
        data={
            "credential_id": resolved.credential_id,
            "api_key_masked": mask_secret(resolved.api_key),
            "has_access_token": resolved.access_token is not None,
            "endpoint_url": resolved.endpoint_url,
            "organization_id": resolved.organization_id,
            "config_vars": resolved.config_vars,
        },
    )


@router.get("/web-search/settings", response_model=SuccessEnvelope[dict])
async def get_web_search_settings(
    request: Request,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    policy = await get_policy(db, tenant_id)
    return success_response(request=request, data={"ok": True, "row": policy.to_dict()})


@router.put("/web-search/settings", response_model=SuccessEnvelope[dict])
async def put_web_search_settings(
    request: Request,
    payload: WebSearchSettingsRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    policy = await upsert_policy(db, tenant_id, payload.model_dump(exclude_unset=True))
    return success_response(request=request, data={"ok": True, "row": policy.to_dict()})


@router.post("/web-search/search", response_model=SuccessEnvelope[dict])
async def web_search(
    request: Request,
    payload: WebSearchRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = payload.query.strip()
    if not query:
        raise _bad_request("QUERY_REQUIRED", "query is required")
    tenant_id = await ensure_system_tenant(db)
    policy = await get_policy(db, tenant_id)
    if not policy.enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "WEB_SEARCH_DISABLED", "message": "Web search is disabled"},
        )
    api_key = get_settings().serper_api_key
    if not api_key:
        raise _bad_request("SERPER_NOT_CONFIGURED", "SERPER_API_KEY is not configured")
    result = await serper_search(
        api_key=api_key,
        query=query,
        country=payload.country,
        language=payload.language,
        limit=payload.limit if payload.limit is not None else 5,
        timeout_ms=policy.timeout_ms,
    )
    return success_response(
        request=request,
        data={
            "query": result.query,
            "country": result.country,
            "language": result.language,
            "organic": [
                {"title": item.title, "link": item.link, "snippet": item.snippet, "position": item.position}
                for item in result.organic
            ],
        },
    )
