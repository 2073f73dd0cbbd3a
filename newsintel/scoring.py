"""Deterministic impact scorer.

Assigns each news item a composite impact score (0 – 100) built from
five independently bounded components:

==================  =======  ==========================================
component           range    rule
==================  =======  ==========================================
source credibility  0–20     descriptor credibility weight verbatim
content relevance   0–25     10 + keyword hits in the title, capped
timing urgency      0–15     step function on item age
market context      0–20     session window of the UTC wall clock
AI confidence       0–20     20 × AI confidence once enriched
==================  =======  ==========================================

The scorer is a pure function of its inputs plus an explicit ``now``;
items never carry a stored score.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, NamedTuple

# ── Keyword tables (matched as lowercase substrings of the title) ──

HIGH_IMPACT_KEYWORDS: tuple[str, ...] = (
    "fed", "fomc", "rate", "inflation", "cpi", "nfp", "gdp", "recession",
    "crash", "surge", "plunge", "record", "breaking", "urgent", "emergency",
    "war", "crisis", "default", "bankruptcy", "hack", "regulation", "ban",
)
MEDIUM_IMPACT_KEYWORDS: tuple[str, ...] = (
    "earnings", "profit", "revenue", "forecast", "outlook", "guidance",
    "upgrade", "downgrade", "buy", "sell", "target", "analysis",
)

# (max age in minutes, points); first matching step wins.
TIMING_STEPS: tuple[tuple[float, int], ...] = (
    (5, 15),
    (30, 12),
    (60, 9),
    (180, 6),
    (1440, 3),
)
TIMING_FLOOR = 1

MARKET_BASE = 10
MARKET_ACTIVE = 15
MARKET_BREAKING = 20

# Category thresholds on the total score.
CRITICAL_MIN = 85
HIGH_MIN = 65
MEDIUM_MIN = 40

RELEVANCE_BASE = 10.0
RELEVANCE_CAP = 25.0


class ScoreInputs(NamedTuple):
    """Exactly the fields the scorer reads from an item."""

    title: str
    credibility: int
    published_ms: int
    is_breaking: bool = False
    ai_confidence: float | None = None  # None = not enriched


@dataclass(frozen=True)
class ImpactBreakdown:
    source_credibility: float
    content_relevance: float
    timing_urgency: float
    market_context: float
    ai_confidence: float
    total: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "sourceCredibility": self.source_credibility,
            "contentRelevance": self.content_relevance,
            "timingUrgency": self.timing_urgency,
            "marketContext": self.market_context,
            "aiConfidence": self.ai_confidence,
        }


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def credibility_score(credibility: int) -> float:
    return _clamp(float(credibility), 0.0, 20.0)


def content_relevance_score(title: str) -> float:
    """10 + 3 per high-impact keyword + 1.5 per medium keyword, capped at 25."""
    lower = (title or "").lower()
    score = RELEVANCE_BASE
    score += 3 * sum(1 for kw in HIGH_IMPACT_KEYWORDS if kw in lower)
    score += 1.5 * sum(1 for kw in MEDIUM_IMPACT_KEYWORDS if kw in lower)
    return min(RELEVANCE_CAP, score)


def timing_score(published_ms: int, now_ms: int) -> int:
    """Step function on age; boundaries are inclusive (exactly 5 min ⇒ 15)."""
    age_min = max(0.0, (now_ms - published_ms) / 60_000)
    for limit, points in TIMING_STEPS:
        if age_min <= limit:
            return points
    return TIMING_FLOOR


def is_active_session(now_ms: int) -> bool:
    """True during the core trading windows (13:00–21:59 or 00:00–04:59 UTC)."""
    hour = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).hour
    return 13 <= hour <= 21 or 0 <= hour <= 4


def market_context_score(now_ms: int, is_breaking: bool = False) -> int:
    if is_breaking:
        return MARKET_BREAKING
    return MARKET_ACTIVE if is_active_session(now_ms) else MARKET_BASE


def ai_confidence_score(ai_confidence: float | None) -> float:
    if ai_confidence is None:
        return 0.0
    return _clamp(20.0 * ai_confidence, 0.0, 20.0)


def score_components(inputs: ScoreInputs, now_ms: int) -> ImpactBreakdown:
    """Compute all five components and the clamped total."""
    source = credibility_score(inputs.credibility)
    relevance = content_relevance_score(inputs.title)
    timing = timing_score(inputs.published_ms, now_ms)
    market = market_context_score(now_ms, inputs.is_breaking)
    ai = ai_confidence_score(inputs.ai_confidence)
    total = _clamp(source + relevance + timing + market + ai, 0.0, 100.0)
    return ImpactBreakdown(
        source_credibility=source,
        content_relevance=relevance,
        timing_urgency=timing,
        market_context=market,
        ai_confidence=ai,
        total=round(total, 2),
    )


def impact_category(score: float) -> str:
    if score >= CRITICAL_MIN:
        return "critical"
    if score >= HIGH_MIN:
        return "high"
    if score >= MEDIUM_MIN:
        return "medium"
    return "low"


def refine_relevance(base: int, content_relevance: float) -> int:
    """Provider base relevance nudged by the title's keyword density."""
    return int(_clamp(base + 2 * (content_relevance - RELEVANCE_BASE), 0, 100))
