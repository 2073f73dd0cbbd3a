"""Normalisation: ``RawArticle`` + ``SourceDescriptor`` → ``NewsItem``.

Runs the cheap local analysis every item gets regardless of AI
enrichment: a weighted sentiment lexicon and ticker extraction, both
over ``title + description``.

Matching works on ``str`` (code points), so emoji terms in the lexicon
match whole characters rather than UTF-8 byte fragments.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from datetime import timezone

from dateutil import parser as dtparser

from .common_types import AlgorithmicAnalysis, NewsItem, RawArticle, SourceDescriptor

logger = logging.getLogger(__name__)


# ── Sentiment lexicon ───────────────────────────────────────────

STRONG_WEIGHT = 15
MEDIUM_WEIGHT = 8
WEAK_WEIGHT = 3

# |score| at or below this is neutral.
NEUTRAL_BAND = 15

SENTIMENT_LEXICON: dict[str, dict[str, tuple[str, ...]]] = {
    "bullish": {
        "strong": (
            "moon", "rocket", "parabolic", "explosive", "soaring", "skyrocket",
            "breakthrough", "all-time high", "ath", "🚀", "💎", "🔥",
        ),
        "medium": (
            "bull", "bullish", "surge", "rally", "gain", "profit", "green",
            "pump", "breakout", "uptrend", "buy", "long", "📈",
            # central-bank language
            "dovish", "rate cut", "cools", "cooling",
        ),
        "weak": (
            "up", "rise", "positive", "growth", "increase", "higher",
            "support", "recovery",
        ),
    },
    "bearish": {
        "strong": (
            "crash", "collapse", "plunge", "dump", "disaster", "bankrupt",
            "fraud", "scam", "rug", "💀", "🔴",
        ),
        "medium": (
            "bear", "bearish", "fall", "drop", "loss", "red", "sell", "short",
            "decline", "correction", "📉",
            "hawkish", "rate hike", "tightening", "hot inflation",
        ),
        "weak": (
            "down", "lower", "decrease", "weakness", "resistance", "concern",
            "risk", "warning",
        ),
    },
}

_WEIGHTS = {"strong": STRONG_WEIGHT, "medium": MEDIUM_WEIGHT, "weak": WEAK_WEIGHT}


def sentiment_score(text: str) -> int:
    """Signed lexicon score in [-100, 100].

    Each term counts once if it appears anywhere in the lowercased text.
    """
    lower = (text or "").lower()
    score = 0
    for polarity, sign in (("bullish", 1), ("bearish", -1)):
        for strength, terms in SENTIMENT_LEXICON[polarity].items():
            weight = _WEIGHTS[strength]
            score += sign * weight * sum(1 for term in terms if term in lower)
    return max(-100, min(100, score))


def label_for_score(score: int) -> str:
    if score > NEUTRAL_BAND:
        return "bullish"
    if score < -NEUTRAL_BAND:
        return "bearish"
    return "neutral"


def analyze_sentiment(text: str) -> AlgorithmicAnalysis:
    score = sentiment_score(text)
    return AlgorithmicAnalysis(
        sentiment=label_for_score(score),  # type: ignore[arg-type]
        score=score,
        confidence=min(abs(score) / 100, 1.0),
    )


# ── Ticker extraction ───────────────────────────────────────────

MAX_TICKERS = 5

_CASHTAG_RE = re.compile(r"\$([A-Z]{2,5})")

KNOWN_ASSETS: tuple[str, ...] = (
    "BTC", "ETH", "SOL", "XRP", "DOGE", "ADA", "DOT", "AVAX", "MATIC", "LINK",
    "XAUUSD", "XAGUSD", "EURUSD", "GBPUSD", "USDJPY", "DXY",
    "SPX", "NDX", "DJI", "VIX",
)


def extract_tickers(text: str) -> list[str]:
    """Cashtags first, then curated-asset substring hits; deduped, max 5."""
    text = text or ""
    found = [m.group(1) for m in _CASHTAG_RE.finditer(text)]
    upper = text.upper()
    found.extend(asset for asset in KNOWN_ASSETS if asset in upper)
    return list(dict.fromkeys(found))[:MAX_TICKERS]


# ── Timestamps ──────────────────────────────────────────────────

# Shortest valid format: "YYYYMMDD" = 8 chars.  Shorter strings like "5"
# are ambiguously parsed by dateutil (e.g. "5" → the 5th of this month).
_MIN_DATE_LEN = 8


def to_epoch_ms(s: str | None) -> int:
    """Parse a date/time string to epoch milliseconds.

    Returns ``0`` for empty, too-short, or unparseable strings.  Naive
    datetimes are assumed UTC so results don't depend on server timezone.
    """
    if not s:
        return 0
    s_stripped = str(s).strip()
    if len(s_stripped) < _MIN_DATE_LEN:
        logger.warning("Date string too short (%d chars): %r; returning epoch 0.", len(s_stripped), s_stripped)
        return 0
    try:
        dt = dtparser.parse(s_stripped)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    except (ValueError, OverflowError):
        logger.warning("Unparseable date %r; returning epoch 0.", s_stripped[:80])
        return 0


def seconds_to_ms(value: object) -> int:
    """Epoch seconds (int/float/str) → ms; 0 on anything unusable."""
    try:
        secs = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(secs) or secs <= 0:
        return 0
    return int(secs * 1000)


# ── Identity ────────────────────────────────────────────────────

def stable_digest(*parts: str) -> str:
    """Short deterministic digest for records without a provider id."""
    raw = "|".join(p.strip().lower() for p in parts if p)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


def make_item_id(source_id: str, provider_id: str) -> str:
    return f"{source_id}-{provider_id}"


# ── Normaliser ──────────────────────────────────────────────────

def _clean(text: str | None) -> str:
    return " ".join(str(text or "").split())


def normalize(raw: RawArticle, source: SourceDescriptor, *, now_ms: int) -> NewsItem | None:
    """Build the canonical item for one parsed record.

    Returns ``None`` when the record has no title or no provider id.
    """
    title = _clean(raw.title)
    provider_id = _clean(raw.provider_id)
    if not title or not provider_id:
        return None
    description = _clean(raw.description)
    text = f"{title} {description}".strip()

    published = raw.published_ms if raw.published_ms > 0 else now_ms

    return NewsItem(
        id=make_item_id(source.id, provider_id),
        title=title,
        description=description,
        url=raw.url or "",
        image_url=raw.image_url or None,
        author=raw.author or None,
        source=raw.source_name or source.name,
        source_id=source.id,
        published_ms=published,
        fetched_ms=now_ms,
        category=source.category,
        tags=list(dict.fromkeys(t for t in raw.tags if t)),
        related_tickers=extract_tickers(text),
        upvotes=max(0, raw.upvotes),
        comments=max(0, raw.comments),
        credibility=source.credibility,
        base_relevance=source.base_relevance,
        scored_at_ms=now_ms,
        analysis=analyze_sentiment(text),
    )
