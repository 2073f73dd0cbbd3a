"""Aggregator: sources → concurrent fetch → normalise → merge/dedupe → rank.

Designed for **poll-on-refresh**: call ``poll_once()`` on each UI cycle
(it runs one ``aggregate`` inside ``asyncio.run``), or ``await
aggregate(...)`` from async code.

Within one refresh the fan-in observes fetches in completion order, but
the final stream order is deterministic: completed batches are merged in
source-priority order, duplicates by title fingerprint are dropped
(first occurrence wins) and a stable sort by impact score follows.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .common_types import NewsItem, RawArticle, SourceDescriptor
from .config import Config
from .ingest import FetcherPool, SourceHealth
from .normalize import normalize
from .ratelimit import TokenBucket
from .sources import SourceRegistry

logger = logging.getLogger(__name__)

# ── Module-level state reused across poll_once() calls ──────────
_registry: SourceRegistry | None = None
_buckets: dict[str, TokenBucket] = {}
_health: dict[str, SourceHealth] = {}


def _get_registry(cfg: Config) -> SourceRegistry:
    global _registry
    if _registry is None:
        _registry = SourceRegistry(config=cfg)
    return _registry


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AggregateResult:
    """Outcome of one refresh cycle."""

    items: list[NewsItem] = field(default_factory=list)
    source_counts: dict[str, int] = field(default_factory=dict)
    failed_sources: list[str] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False
    elapsed_s: float = 0.0

    def summary(self) -> dict[str, Any]:
        return {
            "items": len(self.items),
            "sources": dict(self.source_counts),
            "failed": list(self.failed_sources),
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "elapsed_s": round(self.elapsed_s, 3),
        }


# ── Pure stages ─────────────────────────────────────────────────

def normalize_batch(
    descriptor: SourceDescriptor, articles: Iterable[RawArticle], now_ms: int,
) -> list[NewsItem]:
    """Normalise every record of one completed fetch."""
    out: list[NewsItem] = []
    for raw in articles:
        item = normalize(raw, descriptor, now_ms=now_ms)
        if item is not None:
            out.append(item)
    return out


def merge_batches(
    sources: list[SourceDescriptor], batches: dict[str, list[NewsItem]],
) -> list[NewsItem]:
    """Concatenate batches in the order of *sources*, dropping duplicate titles."""
    seen: set[str] = set()
    merged: list[NewsItem] = []
    for d in sources:
        for item in batches.get(d.id, ()):
            fp = item.title_fingerprint
            if fp in seen:
                continue
            seen.add(fp)
            merged.append(item)
    return merged


def rank(items: list[NewsItem]) -> list[NewsItem]:
    """Stable sort by impact score, highest first."""
    return sorted(items, key=lambda it: -it.impact_score)


# ── Async aggregation ───────────────────────────────────────────

async def aggregate(
    query: str = "",
    category: str = "all",
    *,
    registry: SourceRegistry | None = None,
    pool: FetcherPool | None = None,
    config: Config | None = None,
    cancel: asyncio.Event | None = None,
    clock: Callable[[], int] = _now_ms,
) -> AggregateResult:
    """Fetch all sources for *category* concurrently and rank the result.

    Parameters
    ----------
    query : str
        Free-text query for sources whose endpoint has a ``{query}`` slot.
    category : str
        ``"all"``, a known category view or any source tag.
    cancel : asyncio.Event, optional
        When set, pending fetches are abandoned and the items normalised
        so far are returned.
    clock : callable
        Epoch-ms clock; read once and used as the scoring instant.
    """
    cfg = config or Config()
    reg = registry or _get_registry(cfg)
    t0 = time.monotonic()
    now_ms = clock()
    result = AggregateResult()

    sources = reg.resolve(category)
    if not sources:
        logger.info("No enabled sources for category %r", category)
        result.elapsed_s = time.monotonic() - t0
        return result
    if cancel is not None and cancel.is_set():
        result.cancelled = True
        result.elapsed_s = time.monotonic() - t0
        return result

    own_pool = pool is None
    if pool is None:
        pool = FetcherPool(cfg, buckets=_buckets, health=_health)
    failures_before = {d.id: pool.health_for(d.id).failure_count for d in sources}

    tasks: dict[asyncio.Task, SourceDescriptor] = {
        asyncio.create_task(pool.fetch(d, query), name=f"fetch:{d.id}"): d for d in sources
    }
    cancel_waiter = asyncio.create_task(cancel.wait()) if cancel is not None else None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(0.0, cfg.aggregate_budget_s)
    batches: dict[str, list[NewsItem]] = {}
    pending = set(tasks)

    try:
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                result.timed_out = True
                break
            waiters = pending | {cancel_waiter} if cancel_waiter is not None else pending
            done, _ = await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            if not done:
                result.timed_out = True
                break
            for task in done:
                if task is cancel_waiter:
                    continue
                pending.discard(task)
                d = tasks[task]
                try:
                    batches[d.id] = normalize_batch(d, task.result(), now_ms)
                except Exception:
                    logger.exception("%s: batch processing failed", d.id)
                    result.failed_sources.append(d.id)
            if cancel_waiter is not None and cancel_waiter in done:
                result.cancelled = True
                break
    finally:
        for task in pending:
            task.cancel()
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        leftovers = [*pending, *([cancel_waiter] if cancel_waiter is not None else [])]
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)
        if own_pool:
            await pool.aclose()

    if pending:
        logger.info(
            "Aggregate %s with %d source(s) still in flight: %s",
            "cancelled" if result.cancelled else "hit budget",
            len(pending), ", ".join(sorted(tasks[t].id for t in pending)),
        )

    for d in sources:
        if d.id in batches:
            result.source_counts[d.id] = len(batches[d.id])
            if pool.health_for(d.id).failure_count > failures_before[d.id]:
                result.failed_sources.append(d.id)

    result.items = rank(merge_batches(sources, batches))
    result.elapsed_s = time.monotonic() - t0
    logger.info(
        "Aggregated %d items from %d/%d sources in %.2fs",
        len(result.items), len(batches), len(sources), result.elapsed_s,
    )
    return result


def poll_once(
    query: str = "",
    category: str = "all",
    *,
    config: Config | None = None,
    registry: SourceRegistry | None = None,
) -> AggregateResult:
    """Synchronous refresh: one ``aggregate`` in a fresh event loop.

    Token buckets and health records persist across calls.
    """
    cfg = config or Config()
    reg = registry or _get_registry(cfg)

    async def _run() -> AggregateResult:
        pool = FetcherPool(cfg, buckets=_buckets, health=_health)
        try:
            return await aggregate(query, category, registry=reg, pool=pool, config=cfg)
        finally:
            await pool.aclose()

    return asyncio.run(_run())


def reset_state() -> None:
    """Forget shared buckets, health records and the default registry."""
    global _registry
    _registry = None
    _buckets.clear()
    _health.clear()


def source_health() -> dict[str, dict[str, Any]]:
    """Diagnostics snapshot of every source fetched through the shared state."""
    return {sid: h.to_dict() for sid, h in sorted(_health.items())}
