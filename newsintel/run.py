"""Entry point: ``python -m newsintel.run``

Runs one aggregation refresh, optionally enriches the top items through
the AI gateway, and prints the ranked stream (text table or JSON).

Environment variables are documented in ``newsintel.config``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .ai_enrich import EnrichmentClient, EnrichmentResult
from .config import Config
from .ingest import FetcherPool
from .log_redaction import apply_global_log_redaction
from .pipeline import AggregateResult, aggregate
from .query import NewsFilters, SORT_KEYS, TIME_RANGES, compute_sentiment_stats, query_stream
from .sources import SourceRegistry

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aggregate, score and rank market news from multiple providers."
    )
    parser.add_argument(
        "--category",
        default="all",
        help="Category view: all, gold, crypto, forex or any source tag.",
    )
    parser.add_argument(
        "--query",
        default="",
        help="Free-text query for search-capable sources.",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=20,
        help="How many ranked items to print.",
    )
    parser.add_argument(
        "--sort",
        choices=list(SORT_KEYS),
        default="impact",
        help="Sort key for the printed list.",
    )
    parser.add_argument(
        "--time-range",
        choices=list(TIME_RANGES),
        default="all",
        help="Only keep items published within this window.",
    )
    parser.add_argument(
        "--enrich",
        action="store_true",
        help="Send the top items to the AI gateway for structured analysis.",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="AI model id (defaults to NEWSINTEL_AI_MODEL).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of a text table.",
    )
    return parser.parse_args(argv)


async def _refresh(args: argparse.Namespace, cfg: Config) -> tuple[AggregateResult, EnrichmentResult | None]:
    registry = SourceRegistry(config=cfg)
    pool = FetcherPool(cfg)
    try:
        result = await aggregate(args.query, args.category, registry=registry, pool=pool, config=cfg)
    finally:
        await pool.aclose()
    enriched = None
    if args.enrich:
        enriched = await EnrichmentClient(cfg).enrich(result.items, model_id=args.model)
        if not enriched.status.ok:
            logger.warning("AI enrichment: %s", enriched.status.message)
    return result, enriched


def _print_table(items: list, stats: dict) -> None:
    for rank, it in enumerate(items, 1):
        ai = "AI" if it.ai_analyzed else "  "
        print(
            f"{rank:>3}. [{it.impact_score:5.1f} {it.impact_category:<8}] "
            f"{it.sentiment:<7} {ai} {it.source:<18.18} {it.title[:90]}"
        )
    print(
        f"\n{stats['total']} items · bullish {stats['bullish_pct']}% · "
        f"bearish {stats['bearish_pct']}% · neutral {stats['neutral_pct']}% · "
        f"avg impact {stats['avg_impact']}"
    )


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    apply_global_log_redaction()
    args = _parse_args(argv)
    cfg = Config()

    result, enriched = asyncio.run(_refresh(args, cfg))
    stream = enriched.items if enriched is not None else result.items
    shown = query_stream(stream, NewsFilters(time_range=args.time_range), args.sort, limit=max(0, args.top))
    stats = compute_sentiment_stats(stream)

    if args.json:
        out = {
            "summary": result.summary(),
            "stats": stats,
            "enrichment": (
                {"status": enriched.status.kind, "message": enriched.status.message}
                if enriched is not None else None
            ),
            "items": [it.to_dict() for it in shown],
        }
        json.dump(out, sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")
    else:
        _print_table(shown, stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
