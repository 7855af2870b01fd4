"""Tests for the OpenAI reasoner client and the request throttle."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from webpresence.integrations.llm_client import LLMClient, UsageStats
from webpresence.utils.rate_limiter import RateLimiter


def _completion(content, prompt_tokens=1000, completion_tokens=1000):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _client(content, **kwargs):
    client = LLMClient(api_key="sk-test", **kwargs)
    client._client = MagicMock()
    client._client.chat.completions.create = AsyncMock(return_value=_completion(content))
    return client


# ===========================================================================
# 1. Generation
# ===========================================================================
class TestLLMClient:

    @pytest.mark.asyncio
    async def test_json_inside_code_fence(self):
        client = _client('```json\n{"searchQueries": []}\n```')
        assert await client.generate_json("prompt") == {"searchQueries": []}
        assert client.usage.requests == 1
        assert client.usage.cost_usd == pytest.approx(0.00075)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = _client("Sure! Here are some queries.")
        with pytest.raises(ValueError, match="invalid JSON"):
            await client.generate_json("prompt")

    @pytest.mark.asyncio
    async def test_search_queries_shape_checked(self):
        client = _client('{"summary": "no list"}')
        with pytest.raises(ValueError, match="searchQueries"):
            await client.identify_search_queries("https://example.com", [{"url": "https://example.com/"}])

    @pytest.mark.asyncio
    async def test_search_query_prompt_lists_pages(self):
        client = _client('{"searchQueries": [{"query": "crm"}]}')
        pages = [{
            "url": "https://example.com/",
            "title": "Acme CRM",
            "headings": {"h1": ["Acme"]},
            "keywords": [{"keyword": "crm"}],
        }]
        data = await client.identify_search_queries("https://example.com", pages)
        assert data["searchQueries"][0]["query"] == "crm"
        messages = client._client.chat.completions.create.await_args.kwargs["messages"]
        assert "title: Acme CRM" in messages[1]["content"]
        assert "keywords: crm" in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_recap_requires_content(self):
        client = _client('{"title": "Recap"}')
        with pytest.raises(ValueError, match="missing content"):
            await client.generate_periodic_recap("https://example.com", [], [])

    @pytest.mark.asyncio
    async def test_without_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
            await LLMClient().generate_text("hello")

    @pytest.mark.asyncio
    async def test_spend_cap(self):
        client = _client("{}", max_cost_usd=0.001)
        client.usage.cost_usd = 0.002
        with pytest.raises(RuntimeError, match="spend cap reached"):
            await client.generate_text("hello")
        client._client.chat.completions.create.assert_not_awaited()

    def test_usage_record(self):
        usage = UsageStats()
        assert usage.record(2000, 0) == pytest.approx(0.0003)
        assert usage.input_tokens == 2000
        assert usage.requests == 1


# ===========================================================================
# 2. Throttle
# ===========================================================================
class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_allows_calls_within_window(self):
        limiter = RateLimiter(max_calls=3, window_seconds=60)
        for _ in range(3):
            async with limiter:
                pass
        assert limiter.recent_calls == 3
        assert limiter.delay() > 0

    @pytest.mark.asyncio
    async def test_waits_when_window_full(self):
        limiter = RateLimiter(max_calls=1, window_seconds=0.05)
        await limiter.acquire()
        await limiter.acquire()
        assert limiter.recent_calls == 1

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls=0)
