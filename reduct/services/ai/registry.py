from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import AiModel, ModelConversation


PROVIDER_STATUSES = ("active", "inactive", "deprecated")
MODEL_TYPES = ("text", "image", "audio", "video", "multimodal", "embedding", "code")
MODEL_STATUSES = ("active", "inactive", "deprecated", "beta")


async def provider_model_count(session: AsyncSession, provider_id: str) -> int:
    return int(
        (
            await session.execute(select(func.count()).select_from(AiModel).where(AiModel.provider_id == provider_id))
        ).scalar_one()
    )


async def model_in_use(session: AsyncSession, model: AiModel) -> bool:
    # Timelines store either the registry row id or the provider-facing model id.
    found = (
        await session.execute(
            select(ModelConversation.id)
            .where(or_(ModelConversation.model_id == model.id, ModelConversation.model_id == model.model_id))
            .limit(1)
        )
    ).scalar_one_or_none()
    return found is not None
