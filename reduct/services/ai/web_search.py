from __future__ import annotations

from dataclasses import asdict, dataclass, field
import math
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import WebSearchSettings


DEFAULT_ENABLED_PROVIDERS = ["openai", "google", "anthropic"]

# field -> (default, minimum, maximum)
_NUMERIC_LIMITS: dict[str, tuple[int, int, int]] = {
    "max_search_calls": (3, 1, 10),
    "max_total_snippet_tokens": (1200, 200, 5000),
    "timeout_ms": (10000, 1000, 60000),
    "retry_max": (2, 0, 5),
    "retry_base_delay_ms": (500, 100, 10000),
    "retry_max_delay_ms": (2000, 200, 20000),
}


@dataclass
class WebSearchPolicy:
    enabled: bool = True
    default_allowed: bool = False
    provider: str = "serper"
    enabled_providers: list[str] = field(default_factory=lambda: list(DEFAULT_ENABLED_PROVIDERS))
    max_search_calls: int = 3
    max_total_snippet_tokens: int = 1200
    timeout_ms: int = 10000
    retry_max: int = 2
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 2000

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clamp(value: Any, default: int, minimum: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return min(max(int(value), minimum), maximum)


def _providers(value: Any) -> list[str]:
    if not isinstance(value, list):
        return list(DEFAULT_ENABLED_PROVIDERS)
    seen: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        name = item.strip().lower()
        if name and name not in seen:
            seen.append(name)
    return seen or list(DEFAULT_ENABLED_PROVIDERS)


def normalize_policy(raw: dict[str, Any] | None) -> WebSearchPolicy:
    """Build a policy from loose input; unknown or out-of-range values are defaulted or clamped."""
    data = raw or {}
    provider = data.get("provider")
    numeric = {
        name: _clamp(data.get(name), default, minimum, maximum)
        for name, (default, minimum, maximum) in _NUMERIC_LIMITS.items()
    }
    return WebSearchPolicy(
        enabled=data["enabled"] if isinstance(data.get("enabled"), bool) else True,
        default_allowed=data["default_allowed"] if isinstance(data.get("default_allowed"), bool) else False,
        provider=provider.strip() if isinstance(provider, str) and provider.strip() else "serper",
        enabled_providers=_providers(data.get("enabled_providers")),
        **numeric,
    )


def _row_to_dict(row: WebSearchSettings) -> dict[str, Any]:
    return {
        "enabled": row.enabled,
        "default_allowed": row.default_allowed,
        "provider": row.provider,
        "enabled_providers": row.enabled_providers,
        **{name: getattr(row, name) for name in _NUMERIC_LIMITS},
    }


async def get_policy(session: AsyncSession, tenant_id: str) -> WebSearchPolicy:
    row = await session.get(WebSearchSettings, tenant_id)
    if row is None:
        return WebSearchPolicy()
    return normalize_policy(_row_to_dict(row))


async def upsert_policy(session: AsyncSession, tenant_id: str, patch: dict[str, Any]) -> WebSearchPolicy:
    """Merge ``patch`` over the stored policy, normalize, and persist it."""
    current = await get_policy(session, tenant_id)
    merged = {**current.to_dict(), **{k: v for k, v in patch.items() if v is not None}}
    policy = normalize_policy(merged)
    row = await session.get(WebSearchSettings, tenant_id)
    if row is None:
        row = WebSearchSettings(tenant_id=tenant_id)
        session.add(row)
    for key, value in policy.to_dict().items():
        setattr(row, key, value)
    await session.commit()
    return policy
