"""Source registry: the static provider catalogue plus runtime enable flags.

The catalogue is read-only after start-up; ``SourceRegistry.set_enabled``
is the only mutation and it never touches the descriptors themselves.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable

from . import parsers
from .common_types import ProviderParser, SourceDescriptor, Transport
from .config import Config

logger = logging.getLogger(__name__)

# Editorial credibility weight (0–20) per source id.  Overrides the
# descriptor default; unknown ids get ``DEFAULT_CREDIBILITY``.
SOURCE_CREDIBILITY: dict[str, int] = {
    "forexfactory": 20,
    "kitco": 19,
    "investing": 18,
    "marketwatch": 17,
    "fxstreet": 17,
    "dailyfx": 17,
    "coindesk": 16,
    "theblock": 16,
    "cryptopanic": 15,
    "seekingalpha": 15,
    "finnhub": 15,
    "cryptocompare": 14,
    "decrypt": 14,
    "reddit-crypto": 10,
    "reddit-forex": 10,
    "reddit-gold": 10,
    "hackernews": 10,
}
DEFAULT_CREDIBILITY = 10

# Base relevance (0–100) by provider family.
RELEVANCE_COMMUNITY = 50
RELEVANCE_TECH = 40
RELEVANCE_CRYPTO_WIRE = 60
RELEVANCE_DEFAULT = 50

_FEED_RATE = 30  # requests/minute for syndication feeds


def _feed(
    sid: str, name: str, short: str, endpoint: str, priority: int, *categories: str,
) -> SourceDescriptor:
    return SourceDescriptor(
        id=sid,
        name=name,
        short_name=short,
        transport="syndication-feed",
        endpoint=endpoint,
        parser=parsers.FEED,
        rate_limit=_FEED_RATE,
        priority=priority,
        categories=tuple(categories),
    )


def _api(
    sid: str,
    name: str,
    short: str,
    endpoint: str,
    parser: ProviderParser,
    *,
    rate_limit: int,
    priority: int,
    categories: Iterable[str],
    base_relevance: int = RELEVANCE_DEFAULT,
    api_key_env: str = "",
    enabled: bool = True,
) -> SourceDescriptor:
    return SourceDescriptor(
        id=sid,
        name=name,
        short_name=short,
        transport="json-api",
        endpoint=endpoint,
        parser=parser,
        rate_limit=rate_limit,
        priority=priority,
        categories=tuple(categories),
        base_relevance=base_relevance,
        api_key_required=bool(api_key_env),
        api_key_env=api_key_env,
        enabled=enabled,
    )


def _reddit(board: str, sid: str, *categories: str) -> SourceDescriptor:
    return _api(
        sid, f"r/{board}", f"r/{board.lower()}",
        f"https://www.reddit.com/r/{board}/hot.json?limit=25",
        parsers.REDDIT,
        rate_limit=60, priority=3, categories=categories,
        base_relevance=RELEVANCE_COMMUNITY,
    )


_CATALOGUE: tuple[SourceDescriptor, ...] = (
    # ── Tier 1: financial wires ─────────────────────────────────
    _feed("forexfactory", "ForexFactory", "FF",
          "https://www.forexfactory.com/rss.php", 1,
          "forex", "economic", "calendar"),
    _feed("kitco", "Kitco News", "Kitco",
          "https://www.kitco.com/rss/news.xml", 1,
          "gold", "silver", "commodities", "precious-metals"),
    _feed("investing", "Investing.com", "Inv",
          "https://www.investing.com/rss/news.rss", 1,
          "all", "stocks", "forex", "crypto", "commodities"),
    _feed("marketwatch", "MarketWatch", "MW",
          "https://feeds.content.dowjones.io/public/rss/mw_realtimeheadlines", 1,
          "stocks", "market", "economic"),
    # ── Tier 2: forex desks ─────────────────────────────────────
    _feed("fxstreet", "FXStreet", "FXS",
          "https://www.fxstreet.com/rss/news", 2,
          "forex", "analysis"),
    _feed("dailyfx", "DailyFX", "DFX",
          "https://www.dailyfx.com/feeds/market-news", 2,
          "forex", "analysis", "technical"),
    # ── Tier 2: crypto ──────────────────────────────────────────
    _api("cryptopanic", "CryptoPanic", "CP",
         "https://cryptopanic.com/api/v1/posts/?auth_token={api_key}&public=true",
         parsers.CRYPTOPANIC,
         rate_limit=60, priority=2, categories=("crypto", "bitcoin", "altcoins"),
         api_key_env="CRYPTOPANIC_API_KEY"),
    _feed("coindesk", "CoinDesk", "CD",
          "https://www.coindesk.com/arc/outboundfeeds/rss/", 2,
          "crypto", "blockchain", "defi"),
    _feed("theblock", "The Block", "TB",
          "https://www.theblock.co/rss.xml", 2,
          "crypto", "defi", "institutional"),
    _feed("decrypt", "Decrypt", "Dec",
          "https://decrypt.co/feed", 3,
          "crypto", "web3", "nft"),
    _api("cryptocompare", "CryptoCompare", "CC",
         "https://min-api.cryptocompare.com/data/v2/news/?lang=EN",
         parsers.CRYPTOCOMPARE,
         rate_limit=60, priority=2, categories=("crypto",),
         base_relevance=RELEVANCE_CRYPTO_WIRE),
    # ── Stocks ──────────────────────────────────────────────────
    _feed("seekingalpha", "Seeking Alpha", "SA",
          "https://seekingalpha.com/market_currents.xml", 2,
          "stocks", "analysis", "earnings"),
    _api("finnhub", "Finnhub", "FH",
         "https://finnhub.io/api/v1/news?category=general&token={api_key}",
         parsers.FINNHUB,
         rate_limit=60, priority=2, categories=("stocks", "market", "earnings"),
         api_key_env="FINNHUB_API_KEY", enabled=False),
    # ── Tier 3: community boards ────────────────────────────────
    _reddit("cryptocurrency", "reddit-crypto", "crypto", "community"),
    _reddit("Bitcoin", "reddit-bitcoin", "crypto", "bitcoin", "community"),
    _reddit("CryptoMarkets", "reddit-cryptomarkets", "crypto", "community"),
    _reddit("Forex", "reddit-forex", "forex", "community"),
    _reddit("ForexTrading", "reddit-forextrading", "forex", "community"),
    _reddit("Gold", "reddit-gold", "gold", "community"),
    _reddit("Silverbugs", "reddit-silverbugs", "gold", "silver", "community"),
    _reddit("wallstreetsilver", "reddit-wallstreetsilver", "gold", "silver", "community"),
    _reddit("stocks", "reddit-stocks", "stocks", "community"),
    _reddit("wallstreetbets", "reddit-wallstreetbets", "stocks", "community"),
    _api("hackernews", "Hacker News", "HN",
         "https://hn.algolia.com/api/v1/search?tags=story&query={query}",
         parsers.HACKERNEWS,
         rate_limit=100, priority=4, categories=("tech", "finance", "startup"),
         base_relevance=RELEVANCE_TECH),
)

NEWS_SOURCES: tuple[SourceDescriptor, ...] = tuple(
    dataclasses.replace(d, credibility=SOURCE_CREDIBILITY.get(d.id, DEFAULT_CREDIBILITY))
    for d in _CATALOGUE
)

# Sources queried for the "all" view.
DEFAULT_SOURCE_IDS: tuple[str, ...] = (
    "reddit-crypto",
    "reddit-stocks",
    "reddit-wallstreetbets",
    "reddit-forex",
    "reddit-gold",
    "hackernews",
    "cryptocompare",
)

# Explicit source lists for the well-known category views.
CATEGORY_SOURCES: dict[str, tuple[str, ...]] = {
    "gold": ("reddit-gold", "reddit-silverbugs", "reddit-wallstreetsilver", "kitco"),
    "crypto": ("reddit-crypto", "reddit-bitcoin", "reddit-cryptomarkets", "cryptocompare", "cryptopanic"),
    "forex": ("reddit-forex", "reddit-forextrading", "forexfactory", "fxstreet"),
}


class SourceRegistry:
    """Catalogue lookup with per-process enable flags.

    Parameters
    ----------
    sources : iterable of SourceDescriptor, optional
        Catalogue to serve; defaults to ``NEWS_SOURCES``.
    config : Config, optional
        Ids in ``config.disabled_sources`` start disabled.
    default_ids, category_sources :
        Overrides for the "all" view and the explicit category lists.
    """

    def __init__(
        self,
        sources: Iterable[SourceDescriptor] | None = None,
        config: Config | None = None,
        *,
        default_ids: Iterable[str] | None = None,
        category_sources: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self._sources: tuple[SourceDescriptor, ...] = tuple(NEWS_SOURCES if sources is None else sources)
        self._by_id = {d.id: d for d in self._sources}
        self._order = {d.id: i for i, d in enumerate(self._sources)}
        self._enabled = {d.id: d.enabled for d in self._sources}
        self._default_ids = tuple(DEFAULT_SOURCE_IDS if default_ids is None else default_ids)
        self._category_sources = dict(CATEGORY_SOURCES if category_sources is None else category_sources)
        if config is not None:
            for sid in config.disabled_sources:
                if sid in self._enabled:
                    self._enabled[sid] = False
                else:
                    logger.warning("Disabled source %r is not in the catalogue; ignoring.", sid)

    # ── Lookup ──────────────────────────────────────────────────

    def all(self) -> list[SourceDescriptor]:
        return list(self._sources)

    def get(self, source_id: str) -> SourceDescriptor | None:
        return self._by_id.get(source_id)

    def is_enabled(self, source_id: str) -> bool:
        return self._enabled.get(source_id, False)

    def enabled(self) -> list[SourceDescriptor]:
        return [d for d in self._sources if self._enabled[d.id]]

    def by_category(self, tag: str) -> list[SourceDescriptor]:
        return [d for d in self._sources if d.has_category(tag)]

    def by_transport(self, transport: Transport) -> list[SourceDescriptor]:
        return [d for d in self._sources if d.transport == transport]

    # ── Mutation ────────────────────────────────────────────────

    def set_enabled(self, source_id: str, flag: bool) -> None:
        if source_id not in self._enabled:
            raise KeyError(f"unknown source id: {source_id!r}")
        self._enabled[source_id] = bool(flag)
        logger.info("Source %s %s", source_id, "enabled" if flag else "disabled")

    # ── Resolution ──────────────────────────────────────────────

    def resolve(self, category: str = "all") -> list[SourceDescriptor]:
        """Enabled sources for a category view, by priority then catalogue order."""
        tag = (category or "all").lower()
        if tag == "all":
            picked = [self._by_id[sid] for sid in self._default_ids if sid in self._by_id]
        elif tag in self._category_sources:
            picked = [self._by_id[sid] for sid in self._category_sources[tag] if sid in self._by_id]
        else:
            picked = self.by_category(tag)
        picked = [d for d in picked if self._enabled[d.id]]
        return sorted(picked, key=lambda d: (d.priority, self._order[d.id]))
