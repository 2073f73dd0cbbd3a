"""AI enrichment: structured trading analysis for the top-N headlines.

Queries an OpenAI-compatible chat-completions endpoint (Groq or OpenAI)
with one prompt listing ``ID: …\\nTitle: …`` pairs and merges the
returned ``analyses`` back into the stream.

Nothing raises across ``EnrichmentClient.enrich``: every failure becomes
an ``EnrichmentStatus`` with a single user-facing message, and the
stream comes back unchanged.  After an HTTP 402 further calls are
suppressed until ``reset_credits()``.

Uses **httpx** directly rather than a vendor SDK.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ._http import sanitize_exc
from .common_types import (
    IMPACT_LEVELS,
    RISK_LEVELS,
    SENTIMENTS,
    SIGNAL_ACTIONS,
    SIGNAL_DIRECTIONS,
    TIME_HORIZONS,
    AiAnalysis,
    AiEnriched,
    AlgorithmicAnalysis,
    NewsItem,
    TradingSignal,
)
from .config import Config
from .errors import CreditsExhausted, RateLimited, TransportFailure, raise_for_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AiModel:
    id: str
    provider: str
    name: str
    model: str
    endpoint: str
    max_tokens: int = 2000
    temperature: float = 0.3


_GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"

AI_MODELS: dict[str, AiModel] = {
    m.id: m
    for m in (
        AiModel("groq-llama", "groq", "Groq Llama 3.1 70B", "llama-3.1-70b-versatile", _GROQ_URL),
        AiModel("groq-llama-small", "groq", "Groq Llama 3.1 8B", "llama-3.1-8b-instant", _GROQ_URL),
        AiModel("openai-gpt4", "openai", "GPT-4 Turbo", "gpt-4-turbo-preview", _OPENAI_URL),
        AiModel("openai-gpt35", "openai", "GPT-3.5 Turbo", "gpt-3.5-turbo", _OPENAI_URL),
    )
}

MAX_KEY_POINTS = 3

PROMPT_TEMPLATE = """You are a professional Wall Street analyst covering gold, forex and crypto.

Analyze the news below and answer with JSON.

Rules:
1. sentiment: "bullish" / "bearish" / "neutral"
2. confidence: 0.0-1.0
3. impact: "critical" / "high" / "medium" / "low"
4. timeHorizon: "immediate" (<1h) / "short" (<1d) / "medium" (<1w) / "long" (>1w)
5. tradingSignal: trade recommendation
6. relatedTickers: related assets (XAUUSD, EURUSD, BTC, ...)
7. summary: one sentence, at most 80 characters
8. keyPoints: 2-3 key points, at most 40 characters each

News to analyze:
{headlines}

Reply with JSON only, no markdown and no other text:
{
  "analyses": [
    {
      "id": "news-id",
      "sentiment": "bullish",
      "confidence": 0.85,
      "impact": "high",
      "timeHorizon": "short",
      "tradingSignal": {
        "action": "buy",
        "strength": 75,
        "suggestedAssets": ["XAUUSD", "EURUSD"],
        "direction": "long",
        "timeframe": "4H-1D",
        "reasoning": "Fed dovish = USD weak = Gold strong",
        "riskLevel": "medium"
      },
      "relatedTickers": ["XAUUSD", "DXY", "EURUSD", "GLD"],
      "summary": "Fed turns dovish, supporting gold and EUR",
      "keyPoints": ["Fed may pause hikes", "Dollar weakens", "Safe-haven demand rises"]
    }
  ]
}"""


def build_prompt(items: list[NewsItem]) -> str:
    headlines = "\n\n".join(f"ID: {it.id}\nTitle: {it.title}" for it in items)
    # str.replace, not .format: the template contains literal JSON braces.
    return PROMPT_TEMPLATE.replace("{headlines}", headlines)


# ── Status ──────────────────────────────────────────────────────

OK = "ok"
RATE_LIMITED = "rate_limited"
CREDITS_EXHAUSTED = "credits_exhausted"
SUPPRESSED = "suppressed"
NOT_CONFIGURED = "not_configured"
ERROR = "error"


@dataclass(frozen=True)
class EnrichmentStatus:
    kind: str
    message: str

    @property
    def ok(self) -> bool:
        return self.kind == OK


@dataclass
class EnrichmentResult:
    items: list[NewsItem]
    status: EnrichmentStatus
    analyzed: int = 0


# ── Response parsing ────────────────────────────────────────────

def extract_first_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in *text*, or None.

    Surrounding prose and Markdown code fences are ignored.
    """
    if not text:
        return None
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(text, idx)
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            return obj
        idx = text.find("{", idx + 1)
    return None


def _str_list(x: Any) -> tuple[str, ...] | None:
    if x is None:
        return ()
    if not isinstance(x, list) or not all(isinstance(s, str) for s in x):
        return None
    return tuple(s.strip() for s in x if s.strip())


def _unit_float(x: Any) -> float | None:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return None
    return max(0.0, min(1.0, float(x)))


def parse_trading_signal(raw: Any) -> TradingSignal | None:
    """Validate a ``tradingSignal`` object; None when unusable."""
    if not isinstance(raw, dict):
        return None
    action = raw.get("action")
    direction = raw.get("direction")
    risk = raw.get("riskLevel", raw.get("risk"))
    strength = raw.get("strength")
    assets = _str_list(raw.get("suggestedAssets"))
    if action not in SIGNAL_ACTIONS or direction not in SIGNAL_DIRECTIONS or risk not in RISK_LEVELS:
        return None
    if isinstance(strength, bool) or not isinstance(strength, (int, float)) or assets is None:
        return None
    return TradingSignal(
        action=action,
        strength=int(max(0, min(100, strength))),
        suggested_assets=tuple(a.upper() for a in assets),
        direction=direction,
        timeframe=str(raw.get("timeframe") or ""),
        reasoning=str(raw.get("reasoning") or ""),
        risk=risk,
    )


def parse_analysis(raw: Any) -> tuple[str, AiAnalysis] | None:
    """Validate one analysis as a whole; None if any required field is bad."""
    if not isinstance(raw, dict):
        return None
    item_id = raw.get("id")
    sentiment = raw.get("sentiment")
    impact = raw.get("impact")
    horizon = raw.get("timeHorizon")
    summary = raw.get("summary")
    confidence = _unit_float(raw.get("confidence"))
    key_points = _str_list(raw.get("keyPoints"))
    tickers = _str_list(raw.get("relatedTickers"))
    if not isinstance(item_id, str) or not item_id:
        return None
    if sentiment not in SENTIMENTS or impact not in IMPACT_LEVELS or horizon not in TIME_HORIZONS:
        return None
    if confidence is None or not isinstance(summary, str) or key_points is None or tickers is None:
        return None
    signal = None
    if raw.get("tradingSignal") is not None:
        signal = parse_trading_signal(raw["tradingSignal"])
        if signal is None:
            return None
    return item_id, AiAnalysis(
        sentiment=sentiment,
        confidence=confidence,
        impact=impact,
        time_horizon=horizon,
        summary=summary.strip(),
        key_points=key_points[:MAX_KEY_POINTS],
        related_tickers=tuple(t.upper() for t in tickers),
        trading_signal=signal,
    )


def parse_response_text(text: str, known_ids: set[str]) -> dict[str, AiAnalysis]:
    """Valid analyses keyed by item id; unknown ids are dropped."""
    obj = extract_first_json_object(text)
    if obj is None:
        return {}
    out: dict[str, AiAnalysis] = {}
    raw_list = obj.get("analyses")
    for raw in raw_list if isinstance(raw_list, list) else []:
        parsed = parse_analysis(raw)
        if parsed is None:
            logger.debug("Skipping invalid analysis: %.200r", raw)
            continue
        item_id, analysis = parsed
        if item_id not in known_ids:
            logger.debug("Skipping analysis for unknown id %r", item_id)
            continue
        out.setdefault(item_id, analysis)
    return out


def enrich_item(item: NewsItem, ai: AiAnalysis) -> NewsItem:
    """New item carrying *ai*; tickers are the union of both analyses."""
    algo = item.algorithmic or AlgorithmicAnalysis(sentiment="neutral", score=0, confidence=0.0)
    tickers = list(dict.fromkeys([*item.related_tickers, *ai.related_tickers]))
    return dataclasses.replace(item, analysis=AiEnriched(algorithmic=algo, ai=ai), related_tickers=tickers)


def apply_analyses(items: list[NewsItem], analyses: dict[str, AiAnalysis]) -> list[NewsItem]:
    """Merge analyses by id, keeping the order of *items*."""
    return [enrich_item(it, analyses[it.id]) if it.id in analyses else it for it in items]


# ── Client ──────────────────────────────────────────────────────

class EnrichmentClient:
    """Calls the model gateway and merges the analyses into the stream."""

    def __init__(self, config: Config | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or Config()
        self._client = client
        self._credits_exhausted = False

    @property
    def suppressed(self) -> bool:
        return self._credits_exhausted

    def reset_credits(self) -> None:
        """Re-allow AI calls after the user has topped up credits."""
        self._credits_exhausted = False

    async def _post(self, model: AiModel, prompt: str) -> dict[str, Any]:
        payload = {
            "model": model.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": model.max_tokens,
            "temperature": model.temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.config.ai_api_key}",
            "Content-Type": "application/json",
        }
        timeout = self.config.ai_timeout_s
        try:
            if self._client is not None:
                resp = await self._client.post(model.endpoint, headers=headers, json=payload, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    resp = await client.post(model.endpoint, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise TransportFailure(f"{type(exc).__name__}: {sanitize_exc(exc)}", source_id=model.id) from None
        raise_for_status(resp.status_code, f"AI gateway HTTP {resp.status_code}", source_id=model.id)
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def enrich(
        self,
        items: list[NewsItem],
        model_id: str | None = None,
        top_n: int | None = None,
    ) -> EnrichmentResult:
        """Analyse the first *top_n* items and merge the results.

        Always returns the full stream; only the analysed items change.
        """
        if self._credits_exhausted:
            return EnrichmentResult(items, EnrichmentStatus(
                SUPPRESSED, "AI credits exhausted; top up and reset before retrying."))
        if not self.config.ai_api_key:
            return EnrichmentResult(items, EnrichmentStatus(NOT_CONFIGURED, "No AI API key configured."))
        model = AI_MODELS.get(model_id or self.config.ai_model)
        if model is None:
            return EnrichmentResult(items, EnrichmentStatus(
                ERROR, f"Unknown AI model {model_id or self.config.ai_model!r}."))

        n = self.config.ai_top_n if top_n is None else top_n
        batch = items[: max(0, n)]
        if not batch:
            return EnrichmentResult(items, EnrichmentStatus(OK, "No items to analyse."))

        try:
            data = await asyncio.wait_for(self._post(model, build_prompt(batch)), timeout=self.config.ai_timeout_s)
        except RateLimited:
            logger.warning("AI gateway rate-limited (%s)", model.id)
            return EnrichmentResult(items, EnrichmentStatus(
                RATE_LIMITED, "AI rate limit reached; try again shortly."))
        except CreditsExhausted:
            logger.warning("AI credits exhausted (%s); suppressing further calls", model.id)
            self._credits_exhausted = True
            return EnrichmentResult(items, EnrichmentStatus(
                CREDITS_EXHAUSTED, "AI credits exhausted; please top up."))
        except asyncio.TimeoutError:
            logger.warning("AI request timed out after %.0fs (%s)", self.config.ai_timeout_s, model.id)
            return EnrichmentResult(items, EnrichmentStatus(ERROR, "AI request timed out."))
        except Exception as exc:
            logger.warning("AI enrichment failed: %s", sanitize_exc(exc))
            return EnrichmentResult(items, EnrichmentStatus(ERROR, "AI analysis failed."))

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not isinstance(content, str):
            logger.warning("AI response had no message content (%s)", model.id)
            return EnrichmentResult(items, EnrichmentStatus(ERROR, "AI returned an empty response."))

        analyses = parse_response_text(content, {it.id for it in batch})
        if not analyses and extract_first_json_object(content) is None:
            logger.warning("AI response contained no JSON object (%s)", model.id)
            return EnrichmentResult(items, EnrichmentStatus(ERROR, "AI response could not be parsed."))

        merged = apply_analyses(items, analyses)
        logger.info("AI analysed %d/%d items with %s", len(analyses), len(batch), model.id)
        return EnrichmentResult(
            merged,
            EnrichmentStatus(OK, f"AI analysed {len(analyses)} of {len(batch)} items."),
            analyzed=len(analyses),
        )

    def enrich_sync(
        self, items: list[NewsItem], model_id: str | None = None, top_n: int | None = None,
    ) -> EnrichmentResult:
        return asyncio.run(self.enrich(items, model_id=model_id, top_n=top_n))
