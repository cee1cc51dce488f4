from __future__ import annotations

import math
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.domain.models import Language, Namespace, Translation, TranslationHistory, TranslationKey
from reduct.services.i18n.translations import (
    DIRECTIONS,
    clear_default_language,
    create_translation_key,
    export_bundle,
    upsert_translation_value,
)


router = APIRouter(prefix="/i18n", tags=["i18n"], responses=DEFAULT_ERROR_RESPONSES)


class LanguageCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)
    name: str = Field(min_length=1, max_length=100)
    native_name: str | None = None
    direction: str = "ltr"
    is_active: bool = True
    is_default: bool = False
    sort_order: int = 0


class LanguageUpdateRequest(BaseModel):
    name: str | None = None
    native_name: str | None = None
    direction: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    sort_order: int | None = None


class NamespaceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    is_system: bool = False


class NamespaceUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None


class TranslationKeyCreateRequest(BaseModel):
    namespace_id: str | None = None
    key: str | None = None
    description: str | None = None


class TranslationValueRequest(BaseModel):
    key_id: str | None = None
    language_code: str | None = None
    value: str = ""


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def _pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit) if limit else 0}


def _language_payload(row: Language) -> dict[str, Any]:
    return {
        "id": row.id,
        "code": row.code,
        "name": row.name,
        "native_name": row.native_name,
        "direction": row.direction,
        "is_active": row.is_active,
        "is_default": row.is_default,
        "sort_order": row.sort_order,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _namespace_payload(row: Namespace) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "is_system": row.is_system,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _translation_payload(row: Translation) -> dict[str, Any]:
    return {
        "id": row.id,
        "key_id": row.key_id,
        "language_id": row.language_id,
        "value": row.value,
        "updated_by": row.updated_by,
        "updated_at": iso(row.updated_at),
    }


def _direction(value: str) -> str:
    if value not in DIRECTIONS:
        raise _bad_request("INVALID_DIRECTION", "direction must be ltr or rtl")
    return value


async def _commit_or_conflict(db: AsyncSession, code: str, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": code, "message": message}) from exc
    except Exception:
        await db.rollback()
        raise


# ---------------------------------------------------------------------------
# Languages
# ---------------------------------------------------------------------------


@router.get("/languages", response_model=SuccessEnvelope[list[dict]])
async def list_languages(
    request: Request,
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(Language)
    if active_only:
        query = query.where(Language.is_active.is_(True))
    rows = (await db.execute(query.order_by(Language.sort_order, Language.code))).scalars().all()
    return success_response(request=request, data=[_language_payload(row) for row in rows])


@router.post("/languages", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_language(
    request: Request,
    payload: LanguageCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    row = Language(
        code=payload.code.strip(),
        name=payload.name.strip(),
        native_name=payload.native_name,
        direction=_direction(payload.direction),
        is_active=payload.is_active,
        is_default=payload.is_default,
        sort_order=payload.sort_order,
    )
    if row.is_default:
        await clear_default_language(db)
    db.add(row)
    await _commit_or_conflict(db, "LANGUAGE_EXISTS", "Language code already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_language_payload(row)),
    )


@router.put("/languages/{language_id}", response_model=SuccessEnvelope[dict])
async def update_language(
    request: Request,
    language_id: str,
    payload: LanguageUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(Language, language_id)
    if row is None:
        raise _not_found("LANGUAGE_NOT_FOUND", "Language not found")
    patch = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "direction" in patch:
        _direction(patch["direction"])
    if patch.get("is_default"):
        await clear_default_language(db, keep_id=row.id)
    for key, value in patch.items():
        setattr(row, key, value)
    await _commit_or_conflict(db, "LANGUAGE_EXISTS", "Language code already exists")
    return success_response(request=request, data=_language_payload(row))


@router.delete("/languages/{language_id}", response_model=SuccessEnvelope[dict])
async def delete_language(
    request: Request,
    language_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(Language, language_id)
    if row is None:
        raise _not_found("LANGUAGE_NOT_FOUND", "Language not found")
    if row.is_default:
        raise _bad_request("DEFAULT_LANGUAGE", "Cannot delete the default language")
    try:
        translation_ids = select(Translation.id).where(Translation.language_id == language_id)
        await db.execute(delete(TranslationHistory).where(TranslationHistory.translation_id.in_(translation_ids)))
        await db.execute(delete(Translation).where(Translation.language_id == language_id))
        await db.delete(row)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return success_response(request=request, data={"message": "Language deleted successfully"})


# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------


@router.get("/namespaces", response_model=SuccessEnvelope[list[dict]])
async def list_namespaces(
    request: Request,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = (await db.execute(select(Namespace).order_by(Namespace.name))).scalars().all()
    return success_response(request=request, data=[_namespace_payload(row) for row in rows])


@router.get("/namespaces/{namespace_id}", response_model=SuccessEnvelope[dict])
async def get_namespace(
    request: Request,
    namespace_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(Namespace, namespace_id)
    if row is None:
        raise _not_found("NAMESPACE_NOT_FOUND", "Namespace not found")
    return success_response(request=request, data=_namespace_payload(row))


@router.post("/namespaces", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_namespace(
    request: Request,
    payload: NamespaceCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    row = Namespace(name=payload.name.strip(), description=payload.description, is_system=payload.is_system)
    db.add(row)
    await _commit_or_conflict(db, "NAMESPACE_EXISTS", "Namespace already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_namespace_payload(row)),
    )


@router.put("/namespaces/{namespace_id}", response_model=SuccessEnvelope[dict])
async def update_namespace(
    request: Request,
    namespace_id: str,
    payload: NamespaceUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(Namespace, namespace_id)
    if row is None:
        raise _not_found("NAMESPACE_NOT_FOUND", "Namespace not found")
    if payload.name is not None:
        if row.is_system and payload.name.strip() != row.name:
            raise _bad_request("SYSTEM_NAMESPACE", "System namespaces cannot be renamed")
        row.name = payload.name.strip()
    if payload.description is not None:
        row.description = payload.description
    await _commit_or_conflict(db, "NAMESPACE_EXISTS", "Namespace already exists")
    return success_response(request=request, data=_namespace_payload(row))


@router.delete("/namespaces/{namespace_id}", response_model=SuccessEnvelope[dict])
async def delete_namespace(
    request: Request,
    namespace_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(Namespace, namespace_id)
    if row is None:
        raise _not_found("NAMESPACE_NOT_FOUND", "Namespace not found")
    if row.is_system:
        raise _bad_request("SYSTEM_NAMESPACE", "System namespaces cannot be deleted")
    try:
        key_ids = select(TranslationKey.id).where(TranslationKey.namespace_id == namespace_id)
        translation_ids = select(Translation.id).where(Translation.key_id.in_(key_ids))
        await db.execute(delete(TranslationHistory).where(TranslationHistory.translation_id.in_(translation_ids)))
        await db.execute(delete(Translation).where(Translation.key_id.in_(key_ids)))
        await db.execute(delete(TranslationKey).where(TranslationKey.namespace_id == namespace_id))
        await db.delete(row)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return success_response(request=request, data={"message": "Namespace deleted successfully"})


# ---------------------------------------------------------------------------
# Translations
# ---------------------------------------------------------------------------


@router.get("/translations", response_model=SuccessEnvelope[dict])
async def list_translations(
    request: Request,
    search: str | None = None,
    namespace_id: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(TranslationKey.key.ilike(pattern), TranslationKey.description.ilike(pattern)))
    if namespace_id and namespace_id != "all":
        conditions.append(TranslationKey.namespace_id == namespace_id)

    total = (await db.execute(select(func.count()).select_from(TranslationKey).where(*conditions))).scalar_one()
    keys = (
        await db.execute(
            select(TranslationKey, Namespace.name)
            .join(Namespace, Namespace.id == TranslationKey.namespace_id)
            .where(*conditions)
            .order_by(TranslationKey.created_at.desc(), TranslationKey.key)
            .limit(limit)
            .offset((page - 1) * limit)
        )
    ).all()

    key_ids = [key.id for key, _ in keys]
    values: dict[str, dict[str, str]] = {key_id: {} for key_id in key_ids}
    if key_ids:
        value_rows = await db.execute(
            select(Translation.key_id, Language.code, Translation.value)
            .join(Language, Language.id == Translation.language_id)
            .where(Translation.key_id.in_(key_ids))
        )
        for key_id, code, value in value_rows.all():
            values[key_id][code] = value

    rows = [
        {
            "id": key.id,
            "key": key.key,
            "description": key.description,
            "namespace_id": key.namespace_id,
            "namespace_name": namespace_name,
            "translations": values[key.id],
        }
        for key, namespace_name in keys
    ]
    return success_response(request=request, data={"rows": rows, "pagination": _pagination(page, limit, int(total))})


@router.post("/translations/keys", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_key(
    request: Request,
    payload: TranslationKeyCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    row = await create_translation_key(
        db,
        namespace_id=(payload.namespace_id or "").strip(),
        key=(payload.key or "").strip(),
        description=payload.description,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(
            request=request,
            data={
                "id": row.id,
                "namespace_id": row.namespace_id,
                "key": row.key,
                "description": row.description,
                "created_at": iso(row.created_at),
            },
        ),
    )


@router.delete("/translations/keys/{key_id}", response_model=SuccessEnvelope[dict])
async def delete_key(
    request: Request,
    key_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(TranslationKey, key_id)
    if row is None:
        raise _not_found("TRANSLATION_KEY_NOT_FOUND", "Translation key not found")
    try:
        translation_ids = select(Translation.id).where(Translation.key_id == key_id)
        await db.execute(delete(TranslationHistory).where(TranslationHistory.translation_id.in_(translation_ids)))
        await db.execute(delete(Translation).where(Translation.key_id == key_id))
        await db.delete(row)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return success_response(request=request, data={"message": "Translation key deleted successfully"})


@router.put("/translations/values", response_model=SuccessEnvelope[dict])
async def put_value(
    request: Request,
    payload: TranslationValueRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await upsert_translation_value(
        db,
        key_id=(payload.key_id or "").strip(),
        language_code=(payload.language_code or "").strip(),
        value=payload.value,
        changed_by=admin.user_id,
    )
    return success_response(request=request, data=_translation_payload(row))


@router.get("/history", response_model=SuccessEnvelope[dict])
async def list_history(
    request: Request,
    search: str | None = None,
    namespace_id: str | None = None,
    language_code: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                TranslationKey.key.ilike(pattern),
                TranslationHistory.new_value.ilike(pattern),
                TranslationHistory.old_value.ilike(pattern),
            )
        )
    if namespace_id and namespace_id != "all":
        conditions.append(TranslationKey.namespace_id == namespace_id)
    if language_code and language_code != "all":
        conditions.append(Language.code == language_code)

    def _joined(stmt):
        return (
            stmt.join(Translation, Translation.id == TranslationHistory.translation_id)
            .join(TranslationKey, TranslationKey.id == Translation.key_id)
            .join(Namespace, Namespace.id == TranslationKey.namespace_id)
            .join(Language, Language.id == Translation.language_id)
            .where(*conditions)
        )

    total = (
        await db.execute(_joined(select(func.count(TranslationHistory.id)).select_from(TranslationHistory)))
    ).scalar_one()
    base = _joined(
        select(
            TranslationHistory,
            TranslationKey.key,
            Namespace.name.label("namespace_name"),
            Language.code,
            Language.name.label("language_name"),
        )
    )
    result = await db.execute(
        base.order_by(TranslationHistory.created_at.desc(), TranslationHistory.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    rows = [
        {
            "id": history.id,
            "translation_id": history.translation_id,
            "old_value": history.old_value,
            "new_value": history.new_value,
            "change_reason": history.change_reason,
            "changed_by": history.changed_by,
            "created_at": iso(history.created_at),
            "key": key,
            "namespace_name": namespace_name,
            "language_code": code,
            "language_name": language_name,
        }
        for history, key, namespace_name, code, language_name in result.all()
    ]
    return success_response(request=request, data={"rows": rows, "pagination": _pagination(page, limit, int(total))})


@router.get("/bundle/{language_code}/{namespace}", response_model=SuccessEnvelope[dict])
async def get_bundle(
    request: Request,
    language_code: str,
    namespace: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    bundle = await export_bundle(db, language_code=language_code, namespace=namespace)
    return success_response(request=request, data=bundle)
