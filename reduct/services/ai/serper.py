from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any

import httpx

from reduct.core.config import get_settings
from reduct.core.errors import SerperError


logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_TIMEOUT_MS = 10_000


@dataclass(frozen=True)
class OrganicResult:
    title: str
    link: str
    snippet: str
    position: int


@dataclass(frozen=True)
class SearchResult:
    query: str
    country: str
    language: str
    organic: list[OrganicResult]
    raw: dict[str, Any] = field(default_factory=dict)


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    # Non-numeric and zero inputs fall back to the default before clamping.
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        number = default
    if number == 0:
        number = default
    return min(max(number, minimum), maximum)


def _safe_str(value: Any, max_len: int) -> str:
    text = value if isinstance(value, str) else ("" if value is None else str(value))
    return text[:max_len]


def _organic_items(payload: dict[str, Any], limit: int) -> list[OrganicResult]:
    raw_items = payload.get("organic")
    if not isinstance(raw_items, list):
        return []
    items: list[OrganicResult] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        title = _safe_str(item.get("title"), 160).strip()
        link = _safe_str(item.get("link"), 500).strip()
        if not title or not link:
            continue
        try:
            position = int(item.get("position") or 0)
        except (TypeError, ValueError):
            position = 0
        items.append(
            OrganicResult(
                title=title,
                link=link,
                snippet=_safe_str(item.get("snippet"), 400).strip(),
                position=position,
            )
        )
    return items[:limit]


async def serper_search(
    *,
    api_key: str,
    query: str,
    country: str | None = None,
    language: str | None = None,
    limit: Any = DEFAULT_LIMIT,
    timeout_ms: Any = DEFAULT_TIMEOUT_MS,
    client: httpx.AsyncClient | None = None,
) -> SearchResult:
    """Run one Google search through Serper and trim the organic results.

    Non-2xx responses raise ``SerperError("SERPER_HTTP_<status>:<body>")``; there is
    no retry.
    """
    resolved_limit = clamp_int(limit, 1, 10, DEFAULT_LIMIT)
    resolved_timeout_ms = clamp_int(timeout_ms, 2000, 30000, DEFAULT_TIMEOUT_MS)
    body = {"q": query, "gl": country, "hl": language, "num": max(resolved_limit, 5)}
    headers = {"X-API-KEY": api_key, "Content-Type": "application/json"}
    url = get_settings().serper_api_url

    if client is None:
        async with httpx.AsyncClient(timeout=resolved_timeout_ms / 1000.0) as owned_client:
            response = await owned_client.post(url, json=body, headers=headers)
    else:
        response = await client.post(url, json=body, headers=headers, timeout=resolved_timeout_ms / 1000.0)

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    if response.status_code >= 400:
        logger.warning("serper_search_failed status=%s", response.status_code)
        raise SerperError(
            f"SERPER_HTTP_{response.status_code}:{json.dumps(payload, separators=(',', ':'))}",
            status_code=response.status_code,
        )
    return SearchResult(
        query=str(query or ""),
        country=str(country or ""),
        language=str(language or ""),
        organic=_organic_items(payload, resolved_limit),
        raw=payload,
    )
