from __future__ import annotations

import json

import httpx
import pytest

from reduct.core.errors import SerperError
from reduct.services.ai.serper import clamp_int, serper_search


async def test_search_posts_query_and_trims_results() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        organic = [
            {"title": f"Result {i}", "link": f"https://example.com/{i}", "snippet": "s" * 600, "position": i}
            for i in range(1, 8)
        ]
        organic.insert(0, {"title": "", "link": "https://skipped"})
        return httpx.Response(200, json={"organic": organic})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await serper_search(
            api_key="serper-key", query="fastapi", country="kr", language="ko", limit=3, client=client
        )

    body = json.loads(seen[0].content)
    assert body == {"q": "fastapi", "gl": "kr", "hl": "ko", "num": 5}
    assert seen[0].headers["X-API-KEY"] == "serper-key"
    assert [item.position for item in result.organic] == [1, 2, 3]
    assert len(result.organic[0].snippet) == 400
    assert result.query == "fastapi"


async def test_search_http_error_carries_status_and_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "bad key"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SerperError) as excinfo:
            await serper_search(api_key="nope", query="q", client=client)
    assert str(excinfo.value) == 'SERPER_HTTP_403:{"message":"bad key"}'
    assert excinfo.value.status_code == 403


def test_clamp_int_defaults_and_bounds() -> None:
    assert clamp_int("abc", 1, 10, 5) == 5
    assert clamp_int(0, 1, 10, 5) == 5
    assert clamp_int(50, 1, 10, 5) == 10
    assert clamp_int("2.9", 1, 10, 5) == 2
    assert clamp_int(500, 2000, 30000, 10000) == 2000
