"""Unified internal schema shared across all news providers.

Every adapter (Reddit, CryptoCompare, Hacker News, RSS, …) parses its
raw payload into a ``RawArticle``; the normaliser turns that into a
``NewsItem`` before it enters the ranking pipeline.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .scoring import ImpactBreakdown, ScoreInputs, impact_category, refine_relevance, score_components

Sentiment = Literal["bullish", "bearish", "neutral"]
ImpactLevel = Literal["critical", "high", "medium", "low"]
TimeHorizon = Literal["immediate", "short", "medium", "long"]
Transport = Literal["json-api", "syndication-feed"]

SENTIMENTS: tuple[str, ...] = ("bullish", "bearish", "neutral")
IMPACT_LEVELS: tuple[str, ...] = ("critical", "high", "medium", "low")
TIME_HORIZONS: tuple[str, ...] = ("immediate", "short", "medium", "long")
SIGNAL_ACTIONS: tuple[str, ...] = ("strong_buy", "buy", "hold", "sell", "strong_sell", "watch")
SIGNAL_DIRECTIONS: tuple[str, ...] = ("long", "short", "neutral")
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high")


# ── Provider side ───────────────────────────────────────────────

@dataclass
class RawArticle:
    """Provider-agnostic intermediate record produced by a parse function."""

    provider_id: str
    title: str
    description: str = ""
    url: str = ""
    image_url: str | None = None
    author: str | None = None
    published_ms: int = 0  # 0 = publisher gave no usable timestamp
    upvotes: int = 0
    comments: int = 0
    tags: list[str] = field(default_factory=list)
    source_name: str = ""  # publisher shown to the user, if the provider relays others


@dataclass(frozen=True)
class ProviderParser:
    """Parse capability carried by a source descriptor.

    ``extract`` turns a decoded body (JSON value or feed text) into flat
    records; ``parse`` maps one record to a ``RawArticle`` (or ``None``
    when the record is unusable).  Both must tolerate missing fields.
    """

    name: str
    extract: Callable[[Any], list[dict[str, Any]]]
    parse: Callable[[dict[str, Any]], RawArticle | None]


@dataclass(frozen=True)
class SourceDescriptor:
    """Static description of one news provider."""

    id: str
    name: str
    short_name: str
    transport: Transport
    endpoint: str  # may contain {query} / {api_key}
    parser: ProviderParser
    rate_limit: int  # requests per minute
    priority: int  # 1 = highest
    categories: tuple[str, ...]  # unique tags, declaration order
    credibility: int = 10  # 0–20
    base_relevance: int = 50  # 0–100
    api_key_required: bool = False
    api_key_env: str = ""
    enabled: bool = True

    @property
    def category(self) -> str:
        """Primary category tag (first declared, ignoring the ``all`` marker)."""
        for tag in self.categories:
            if tag != "all":
                return tag
        return "general"

    def has_category(self, tag: str) -> bool:
        return tag.lower() in self.categories


# ── Analysis variants ───────────────────────────────────────────

@dataclass(frozen=True)
class AlgorithmicAnalysis:
    """Fast local lexicon analysis."""

    sentiment: Sentiment
    score: int  # -100 … +100
    confidence: float  # 0 … 1


@dataclass(frozen=True)
class TradingSignal:
    action: str
    strength: int  # 0–100
    suggested_assets: tuple[str, ...]
    direction: str
    timeframe: str
    reasoning: str
    risk: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "strength": self.strength,
            "suggestedAssets": list(self.suggested_assets),
            "direction": self.direction,
            "timeframe": self.timeframe,
            "reasoning": self.reasoning,
            "riskLevel": self.risk,
        }


@dataclass(frozen=True)
class AiAnalysis:
    """Structured analysis returned by the language-model gateway."""

    sentiment: Sentiment
    confidence: float  # 0 … 1
    impact: ImpactLevel
    time_horizon: TimeHorizon
    summary: str
    key_points: tuple[str, ...]
    related_tickers: tuple[str, ...] = ()
    trading_signal: TradingSignal | None = None


@dataclass(frozen=True)
class AiEnriched:
    """Algorithmic analysis plus the AI analysis that came later."""

    algorithmic: AlgorithmicAnalysis
    ai: AiAnalysis


Analysis = AlgorithmicAnalysis | AiEnriched


# ── Canonical item ──────────────────────────────────────────────

@dataclass
class NewsItem:
    """Canonical, source-agnostic news record.

    The impact score is never stored: it is recomputed from the item's
    fields, its source credibility and ``scored_at_ms`` on every access.
    """

    id: str  # "{source_id}-{provider_id}"
    title: str
    url: str
    source: str  # display name
    source_id: str
    published_ms: int
    fetched_ms: int
    category: str
    credibility: int
    base_relevance: int
    scored_at_ms: int
    analysis: Analysis | None = None
    description: str = ""
    image_url: str | None = None
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    related_tickers: list[str] = field(default_factory=list)
    upvotes: int = 0
    comments: int = 0

    # Externally set by a future breaking-news detector.
    is_breaking: bool = False

    # ── User flags ──────────────────────────────────────────────
    is_read: bool = False
    is_bookmarked: bool = False
    is_hidden: bool = False

    # ── Analysis views ──────────────────────────────────────────

    @property
    def algorithmic(self) -> AlgorithmicAnalysis | None:
        if isinstance(self.analysis, AiEnriched):
            return self.analysis.algorithmic
        return self.analysis

    @property
    def ai(self) -> AiAnalysis | None:
        if isinstance(self.analysis, AiEnriched):
            return self.analysis.ai
        return None

    @property
    def ai_analyzed(self) -> bool:
        return isinstance(self.analysis, AiEnriched)

    @property
    def sentiment(self) -> str:
        """AI sentiment when available, otherwise the algorithmic one."""
        if self.ai is not None:
            return self.ai.sentiment
        algo = self.algorithmic
        return algo.sentiment if algo is not None else "neutral"

    @property
    def sentiment_score(self) -> int:
        algo = self.algorithmic
        return algo.score if algo is not None else 0

    # ── Scoring views ───────────────────────────────────────────

    def score_inputs(self) -> ScoreInputs:
        ai = self.ai
        return ScoreInputs(
            title=self.title,
            credibility=self.credibility,
            published_ms=self.published_ms,
            is_breaking=self.is_breaking,
            ai_confidence=ai.confidence if ai is not None else None,
        )

    @property
    def impact_breakdown(self) -> ImpactBreakdown:
        return score_components(self.score_inputs(), now_ms=self.scored_at_ms)

    @property
    def impact_score(self) -> float:
        return self.impact_breakdown.total

    @property
    def impact_category(self) -> ImpactLevel:
        return impact_category(self.impact_score)

    @property
    def relevance(self) -> int:
        return refine_relevance(self.base_relevance, self.impact_breakdown.content_relevance)

    @property
    def engagement(self) -> int:
        return max(0, self.upvotes) + max(0, self.comments)

    @property
    def title_fingerprint(self) -> str:
        return title_fingerprint(self.title)

    # ── Export ──────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Serialise to plain dict (for JSON export / display)."""
        algo = self.algorithmic
        ai = self.ai
        breakdown = self.impact_breakdown
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "imageUrl": self.image_url,
            "author": self.author,
            "source": self.source,
            "sourceId": self.source_id,
            "timestamp": self.published_ms,
            "fetchedAt": self.fetched_ms,
            "category": self.category,
            "tags": list(self.tags),
            "relatedTickers": list(self.related_tickers),
            "upvotes": self.upvotes,
            "comments": self.comments,
            "algoSentiment": algo.sentiment if algo else "neutral",
            "algoScore": algo.score if algo else 0,
            "algoConfidence": algo.confidence if algo else 0.0,
            "algoRelevance": self.relevance,
            "isAIAnalyzed": ai is not None,
            "impactScore": breakdown.total,
            "impactCategory": impact_category(breakdown.total),
            "impactBreakdown": breakdown.to_dict(),
            "isBreaking": self.is_breaking,
            "isRead": self.is_read,
            "isBookmarked": self.is_bookmarked,
            "isHidden": self.is_hidden,
        }
        if ai is not None:
            out.update({
                "aiSentiment": ai.sentiment,
                "aiConfidence": ai.confidence,
                "aiImpact": ai.impact,
                "aiTimeHorizon": ai.time_horizon,
                "aiSummary": ai.summary,
                "aiKeyPoints": list(ai.key_points),
                "aiTradingSignal": ai.trading_signal.to_dict() if ai.trading_signal else None,
            })
        return out


def title_fingerprint(title: str) -> str:
    """Dedup key: lowercase of the first 50 characters of the title."""
    return (title or "")[:50].lower()
