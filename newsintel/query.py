"""Query surface: pure filters, sorts and stats over the ranked stream.

Nothing here mutates an item; every function returns a new list and
all sorts are stable.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .common_types import NewsItem
from .errors import ConfigError

# time range → window in milliseconds (None = unbounded)
TIME_RANGES: dict[str, int | None] = {
    "all": None,
    "1h": 3_600_000,
    "4h": 4 * 3_600_000,
    "24h": 24 * 3_600_000,
    "7d": 7 * 24 * 3_600_000,
}

SORT_KEYS = ("time", "impact", "sentiment", "relevance", "engagement")


def _as_frozenset(value: Iterable[str] | str | None) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value})
    return frozenset(value)


@dataclass(frozen=True)
class NewsFilters:
    """User-selected filters; empty collections mean "no constraint"."""

    sources: frozenset[str] = field(default_factory=frozenset)
    categories: frozenset[str] = field(default_factory=frozenset)
    sentiments: frozenset[str] = field(default_factory=frozenset)
    impact_levels: frozenset[str] = field(default_factory=frozenset)
    time_range: str = "all"
    tickers: frozenset[str] = field(default_factory=frozenset)
    search_query: str = ""
    ai_only: bool = False
    unread_only: bool = False
    include_hidden: bool = False

    def __post_init__(self) -> None:
        for name in ("sources", "categories", "sentiments", "impact_levels", "tickers"):
            object.__setattr__(self, name, _as_frozenset(getattr(self, name)))
        if self.time_range not in TIME_RANGES:
            raise ConfigError(f"time_range must be one of {sorted(TIME_RANGES)}, got {self.time_range!r}")


def _matches(item: NewsItem, f: NewsFilters, cutoff_ms: int | None, needle: str, tickers: set[str]) -> bool:
    if item.is_hidden and not f.include_hidden:
        return False
    if f.sources and item.source_id not in f.sources:
        return False
    if f.categories and item.category not in f.categories and not f.categories.intersection(item.tags):
        return False
    if f.sentiments and item.sentiment not in f.sentiments:
        return False
    if f.impact_levels and item.impact_category not in f.impact_levels:
        return False
    if cutoff_ms is not None and item.published_ms < cutoff_ms:
        return False
    if tickers and not tickers.intersection(t.upper() for t in item.related_tickers):
        return False
    if needle and needle not in item.title.lower() and needle not in item.description.lower():
        return False
    if f.ai_only and not item.ai_analyzed:
        return False
    if f.unread_only and item.is_read:
        return False
    return True


def filter_items(items: Iterable[NewsItem], filters: NewsFilters, now_ms: int | None = None) -> list[NewsItem]:
    """Items passing every active filter, in their original order."""
    now = int(time.time() * 1000) if now_ms is None else now_ms
    window = TIME_RANGES[filters.time_range]
    cutoff = now - window if window is not None else None
    needle = filters.search_query.strip().lower()
    tickers = {t.upper() for t in filters.tickers}
    return [it for it in items if _matches(it, filters, cutoff, needle, tickers)]


def sort_items(items: Iterable[NewsItem], sort_by: str = "impact") -> list[NewsItem]:
    """Stable descending sort on the chosen key."""
    if sort_by == "time":
        key = lambda it: -it.published_ms  # noqa: E731
    elif sort_by == "impact":
        key = lambda it: -it.impact_score  # noqa: E731
    elif sort_by == "sentiment":
        key = lambda it: -abs(it.sentiment_score)  # noqa: E731
    elif sort_by == "relevance":
        key = lambda it: -it.relevance  # noqa: E731
    elif sort_by == "engagement":
        key = lambda it: -it.engagement  # noqa: E731
    else:
        raise ConfigError(f"sort_by must be one of {SORT_KEYS}, got {sort_by!r}")
    return sorted(items, key=key)


def query_stream(
    items: Iterable[NewsItem],
    filters: NewsFilters | None = None,
    sort_by: str = "impact",
    *,
    limit: int | None = None,
    now_ms: int | None = None,
) -> list[NewsItem]:
    """Filter, then sort, then truncate."""
    out = sort_items(filter_items(items, filters or NewsFilters(), now_ms), sort_by)
    return out[:limit] if limit is not None else out


def compute_sentiment_stats(items: Iterable[NewsItem]) -> dict[str, Any]:
    """Headline counters for a dashboard strip."""
    items = list(items)
    total = len(items)
    counts = {"bullish": 0, "bearish": 0, "neutral": 0}
    for it in items:
        counts[it.sentiment if it.sentiment in counts else "neutral"] += 1

    def pct(n: int) -> float:
        return round(100.0 * n / total, 1) if total else 0.0

    impacts = [it.impact_score for it in items]
    return {
        "total": total,
        "bullish": counts["bullish"],
        "bearish": counts["bearish"],
        "neutral": counts["neutral"],
        "bullish_pct": pct(counts["bullish"]),
        "bearish_pct": pct(counts["bearish"]),
        "neutral_pct": pct(counts["neutral"]),
        "ai_analyzed": sum(1 for it in items if it.ai_analyzed),
        "avg_impact": round(sum(impacts) / total, 2) if total else 0.0,
        "critical": sum(1 for it in items if it.impact_category == "critical"),
        "high": sum(1 for it in items if it.impact_category == "high"),
    }
