from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import Language, Namespace, Translation, TranslationHistory, TranslationKey


logger = logging.getLogger(__name__)

HISTORY_REASON = "Updated via Translation Manager"
DIRECTIONS = ("ltr", "rtl")


def _i18n_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


async def clear_default_language(session: AsyncSession, *, keep_id: str | None = None) -> None:
    # At most one default language at a time.
    stmt = update(Language).where(Language.is_default.is_(True)).values(is_default=False)
    if keep_id is not None:
        stmt = stmt.where(Language.id != keep_id)
    await session.execute(stmt)


async def get_language_by_code(session: AsyncSession, code: str) -> Language | None:
    result = await session.execute(select(Language).where(Language.code == code))
    return result.scalar_one_or_none()


async def create_translation_key(
    session: AsyncSession, *, namespace_id: str, key: str, description: str | None = None
) -> TranslationKey:
    if not namespace_id or not key:
        raise _i18n_error(status.HTTP_400_BAD_REQUEST, "MISSING_FIELDS", "Namespace ID and Key are required")
    if await session.get(Namespace, namespace_id) is None:
        raise _i18n_error(status.HTTP_404_NOT_FOUND, "NAMESPACE_NOT_FOUND", "Namespace not found")
    row = TranslationKey(namespace_id=namespace_id, key=key, description=description)
    session.add(row)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise _i18n_error(
            status.HTTP_409_CONFLICT, "DUPLICATE_TRANSLATION_KEY", "Duplicate key in this namespace"
        ) from exc
    return row


async def upsert_translation_value(
    session: AsyncSession,
    *,
    key_id: str,
    language_code: str,
    value: str,
    changed_by: str | None = None,
) -> Translation:
    """Write one translation and its history row in a single transaction.

    An unchanged value returns the stored translation without touching history.
    """
    if not key_id or not language_code:
        raise _i18n_error(
            status.HTTP_400_BAD_REQUEST, "MISSING_FIELDS", "Key ID and Language Code are required"
        )
    try:
        language = await get_language_by_code(session, language_code)
        if language is None:
            raise _i18n_error(status.HTTP_404_NOT_FOUND, "LANGUAGE_NOT_FOUND", "Language not found")
        if await session.get(TranslationKey, key_id) is None:
            raise _i18n_error(status.HTTP_404_NOT_FOUND, "TRANSLATION_KEY_NOT_FOUND", "Translation key not found")

        existing = (
            await session.execute(
                select(Translation).where(Translation.key_id == key_id, Translation.language_id == language.id)
            )
        ).scalar_one_or_none()
        old_value = existing.value if existing is not None else None
        if existing is not None and old_value == value:
            return existing

        if existing is None:
            existing = Translation(key_id=key_id, language_id=language.id, value=value, updated_by=changed_by)
            session.add(existing)
        else:
            existing.value = value
            existing.updated_by = changed_by
        await session.flush()
        session.add(
            TranslationHistory(
                translation_id=existing.id,
                old_value=old_value,
                new_value=value,
                changed_by=changed_by,
                change_reason=HISTORY_REASON,
            )
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("translation_updated key_id=%s language=%s", key_id, language_code)
    return existing


async def export_bundle(session: AsyncSession, *, language_code: str, namespace: str) -> dict[str, Any]:
    """Flat key -> value map for one namespace, falling back to the default language."""
    language = await get_language_by_code(session, language_code)
    if language is None or not language.is_active:
        raise _i18n_error(status.HTTP_404_NOT_FOUND, "LANGUAGE_NOT_FOUND", "Language not found")
    ns = (await session.execute(select(Namespace).where(Namespace.name == namespace))).scalar_one_or_none()
    if ns is None:
        raise _i18n_error(status.HTTP_404_NOT_FOUND, "NAMESPACE_NOT_FOUND", "Namespace not found")

    default_language = (
        await session.execute(select(Language).where(Language.is_default.is_(True)).limit(1))
    ).scalar_one_or_none()
    language_ids = [language.id]
    if default_language is not None and default_language.id != language.id:
        language_ids.append(default_language.id)

    rows = await session.execute(
        select(TranslationKey.key, Translation.language_id, Translation.value)
        .join(Translation, Translation.key_id == TranslationKey.id)
        .where(TranslationKey.namespace_id == ns.id, Translation.language_id.in_(language_ids))
    )
    primary: dict[str, str] = {}
    fallback: dict[str, str] = {}
    for key, language_id, value in rows.all():
        if language_id == language.id:
            primary[key] = value
        else:
            fallback[key] = value
    return {**fallback, **primary}
