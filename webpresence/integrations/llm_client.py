"""OpenAI-backed reasoner: JSON generation for search queries and SEO reports."""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

import openai

from webpresence.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


# gpt-4o-mini list prices, USD per 1k tokens
INPUT_COST_PER_1K = 0.00015
OUTPUT_COST_PER_1K = 0.0006


@dataclass
class UsageStats:
    """Running token and cost totals for one client."""
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    cost_usd: float = 0.0

    def record(self, input_tokens: int, output_tokens: int) -> float:
        """Add one call's usage and return its cost."""
        cost = input_tokens / 1000 * INPUT_COST_PER_1K + output_tokens / 1000 * OUTPUT_COST_PER_1K
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.requests += 1
        self.cost_usd += cost
        return cost


SEARCH_QUERY_SYSTEM_PROMPT = (
    "You are an SEO strategist. From the pages of a website you identify the "
    "search queries its potential customers type into Google. "
    "Respond ONLY with valid JSON."
)

RECAP_SYSTEM_PROMPT = (
    "You are an SEO analyst writing a periodic visibility recap for a website "
    "owner. Respond ONLY with valid JSON."
)


def _strip_code_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = "\n".join(lines)
    return cleaned


class LLMClient:
    """Async OpenAI client with rate limiting and a spend cap.

    Usage is tracked per instance; the app builds one client per processing
    pass, so ``max_cost_usd`` bounds what a single pass may spend.

    Usage::

        client = LLMClient()
        data = await client.generate_json("Return 5 keywords as a JSON list")
        proposal = await client.identify_search_queries("https://example.com", pages)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 4096,
        temperature: float = 0.7,
        timeout: int = 60,
        requests_per_minute: int = 60,
        max_cost_usd: float = 5.0,
        cost_warning_pct: float = 80.0,
    ):
        self._api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

        self._client: Optional[openai.AsyncOpenAI] = None
        if self._api_key:
            self._client = openai.AsyncOpenAI(api_key=self._api_key, timeout=timeout)

        self._limiter = RateLimiter(requests_per_minute, name="openai")
        self.usage = UsageStats()
        self._max_cost_usd = max_cost_usd
        self._cost_warning_pct = cost_warning_pct

    # ------------------------------------------------------------------
    # Generic generation
    # ------------------------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        system_prompt: str = "You are a helpful SEO assistant.",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        if self._client is None:
            raise RuntimeError("No LLM provider configured. Set OPENAI_API_KEY.")
        self._check_spend()
        await self._limiter.acquire()

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens or self._max_tokens,
            temperature=temperature if temperature is not None else self._temperature,
        )
        content = response.choices[0].message.content or ""
        usage = response.usage
        if usage:
            cost = self.usage.record(usage.prompt_tokens, usage.completion_tokens)
            logger.info(
                "OpenAI call: %d in / %d out tokens, $%.6f",
                usage.prompt_tokens, usage.completion_tokens, cost,
            )
        return content.strip()

    async def generate_json(
        self,
        prompt: str,
        system_prompt: str = "You are a helpful assistant. Respond ONLY with valid JSON.",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Any:
        """Generate a JSON response and parse it.

        Raises:
            ValueError: the model did not return parseable JSON.
        """
        raw = await self.generate_text(
            prompt=prompt,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature if temperature is not None else 0.3,
        )
        try:
            return json.loads(_strip_code_fences(raw))
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse JSON from LLM response: %s", exc)
            logger.debug("Raw response: %s", raw[:500])
            raise ValueError(f"LLM returned invalid JSON: {exc}") from exc

    # ------------------------------------------------------------------
    # Domain prompts
    # ------------------------------------------------------------------

    async def identify_search_queries(
        self,
        website_url: str,
        pages: list[dict[str, Any]],
        max_queries: int = 15,
    ) -> dict[str, Any]:
        """Propose search queries a website should rank for.

        Args:
            website_url: The analyzed site.
            pages: Scraped page summaries (url, title, meta_description,
                headings, keywords).

        Returns:
            ``{"searchQueries": [{query, description, tags, competitionLevel,
            confidence}], "summary": str, "recommendations": [str]}``
        """
        page_lines = []
        for page in pages:
            keywords = ", ".join(k["keyword"] for k in (page.get("keywords") or [])[:10])
            h1 = "; ".join((page.get("headings") or {}).get("h1", [])[:3])
            page_lines.append(
                f"- {page.get('url')}\n  title: {page.get('title') or ''}\n"
                f"  description: {page.get('meta_description') or ''}\n"
                f"  h1: {h1}\n  keywords: {keywords}"
            )
        prompt = (
            f"Website: {website_url}\n\nAnalyzed pages:\n" + "\n".join(page_lines) +
            f"\n\nPropose up to {max_queries} search queries this business should track. "
            "Return JSON with keys: searchQueries (list of objects with query, "
            "description, tags (list of strings), competitionLevel (HIGH or LOW), "
            "confidence (0 to 1)), summary (string) and recommendations (list of strings)."
        )
        data = await self.generate_json(prompt, system_prompt=SEARCH_QUERY_SYSTEM_PROMPT)
        if not isinstance(data, dict) or not isinstance(data.get("searchQueries"), list):
            raise ValueError("LLM response is missing a searchQueries list")
        return data

    async def generate_periodic_recap(
        self,
        website_url: str,
        own_positions: list[dict[str, Any]],
        competitor_positions: list[dict[str, Any]],
        period_days: int = 30,
    ) -> dict[str, Any]:
        """Write a recap of recent ranking movements.

        Returns:
            ``{"title": str, "content": markdown str, "highlights": [str]}``
        """
        prompt = (
            f"Website: {website_url}\nPeriod: last {period_days} days\n\n"
            f"Own SERP positions (most recent first):\n{json.dumps(own_positions, default=str)}\n\n"
            f"Competitor SERP positions:\n{json.dumps(competitor_positions, default=str)}\n\n"
            "Summarize the visibility trends, wins, losses and the competitors to watch. "
            "Return JSON with keys: title (string), content (markdown string) and "
            "highlights (list of strings)."
        )
        data = await self.generate_json(prompt, system_prompt=RECAP_SYSTEM_PROMPT)
        if not isinstance(data, dict) or not data.get("content"):
            raise ValueError("LLM recap response is missing content")
        return data

    # ------------------------------------------------------------------
    # Spend cap
    # ------------------------------------------------------------------

    def _check_spend(self) -> None:
        """Raise once the cost cap is reached; warn when close to it."""
        if self.usage.cost_usd >= self._max_cost_usd:
            raise RuntimeError(
                f"LLM spend cap reached: ${self.usage.cost_usd:.2f} "
                f">= ${self._max_cost_usd:.2f}"
            )
        warning_threshold = self._max_cost_usd * (self._cost_warning_pct / 100)
        if self.usage.cost_usd >= warning_threshold:
            logger.warning(
                "LLM spend warning: $%.2f / $%.2f (%.0f%%)",
                self.usage.cost_usd,
                self._max_cost_usd,
                (self.usage.cost_usd / self._max_cost_usd) * 100,
            )
