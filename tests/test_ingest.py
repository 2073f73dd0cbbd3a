"""Tests for the async fetcher pool (HTTP faked with httpx.MockTransport)."""

from __future__ import annotations

import asyncio
import json
import os
import unittest
from unittest.mock import patch

import httpx


def _descriptor(**overrides):
    from newsintel import parsers
    from newsintel.common_types import SourceDescriptor

    fields = dict(
        id="reddit-test",
        name="r/Test",
        short_name="r/test",
        transport="json-api",
        endpoint="https://reddit.test/r/Test/hot.json",
        parser=parsers.REDDIT,
        rate_limit=60,
        priority=3,
        categories=("crypto",),
    )
    fields.update(overrides)
    return SourceDescriptor(**fields)


REDDIT_BODY = {"data": {"children": [
    {"data": {"id": "p1", "title": "First post", "created_utc": 1704204000, "ups": 5}},
    {"data": {"id": "p2", "title": "Second post", "created_utc": 1704204000, "ups": 1}},
]}}


def _fetch(handler, descriptor, *, config=None, query="", clock=None, times=1):
    """Run ``pool.fetch`` *times* and return (lists of articles, pool)."""
    from newsintel.config import Config
    from newsintel.ingest import FetcherPool

    async def run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            kwargs = {"clock": clock} if clock is not None else {}
            pool = FetcherPool(config or Config(), client=client, **kwargs)
            results = []
            for _ in range(times):
                results.append(list(await pool.fetch(descriptor, query)))
            return results, pool

    return asyncio.run(run())


class _ResetWarnings(unittest.TestCase):

    def setUp(self):
        from newsintel._http import reset_warnings

        reset_warnings()


class TestJsonFetch(_ResetWarnings):

    def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=REDDIT_BODY)

        (articles,), pool = _fetch(handler, _descriptor())
        self.assertEqual([a.provider_id for a in articles], ["p1", "p2"])
        self.assertEqual(str(seen[0].url), "https://reddit.test/r/Test/hot.json")
        health = pool.health["reddit-test"]
        self.assertEqual((health.ok_count, health.failure_count), (1, 0))
        self.assertEqual(health.last_item_count, 2)

    def test_result_is_single_pass(self):
        from newsintel.config import Config
        from newsintel.ingest import FetcherPool

        async def run():
            transport = httpx.MockTransport(lambda r: httpx.Response(200, json=REDDIT_BODY))
            async with httpx.AsyncClient(transport=transport) as client:
                it = await FetcherPool(Config(), client=client).fetch(_descriptor())
                return list(it), list(it)

        first, second = asyncio.run(run())
        self.assertEqual(len(first), 2)
        self.assertEqual(second, [])

    def test_server_error_is_empty_and_logged(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with self.assertLogs("newsintel._http", level="WARNING") as cm:
            (articles,), pool = _fetch(handler, _descriptor())
        self.assertEqual(articles, [])
        self.assertIn("HTTP 500", "\n".join(cm.output))
        self.assertEqual(pool.health["reddit-test"].failure_count, 1)

    def test_repeated_failure_downgraded(self):
        from newsintel.config import Config

        def handler(request):
            return httpx.Response(503)

        with self.assertLogs("newsintel._http", level="DEBUG") as cm:
            (first, second), pool = _fetch(handler, _descriptor(), config=Config(), times=2)
        self.assertEqual((first, second), ([], []))
        levels = [line.split(":", 1)[0] for line in cm.output]
        self.assertEqual(levels, ["WARNING", "DEBUG"])

    def test_rate_limited_provider(self):
        def handler(request):
            return httpx.Response(429)

        (articles,), pool = _fetch(handler, _descriptor())
        self.assertEqual(articles, [])
        self.assertEqual(pool.health["reddit-test"].last_error, "RateLimited")

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        (articles,), pool = _fetch(handler, _descriptor())
        self.assertEqual(articles, [])
        self.assertEqual(pool.health["reddit-test"].last_error, "ParseFailure")

    def test_wrong_top_level_json(self):
        def handler(request):
            return httpx.Response(200, json=["unexpected"])

        (articles,), _ = _fetch(handler, _descriptor())
        self.assertEqual(articles, [])

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        (articles,), pool = _fetch(handler, _descriptor())
        self.assertEqual(articles, [])
        self.assertEqual(pool.health["reddit-test"].failure_count, 1)


class TestTimeout(_ResetWarnings):

    def test_slow_provider_times_out(self):
        from newsintel.config import Config

        async def handler(request):
            await asyncio.sleep(2)
            return httpx.Response(200, json=REDDIT_BODY)

        (articles,), pool = _fetch(handler, _descriptor(), config=Config(fetch_timeout_s=0.05))
        self.assertEqual(articles, [])
        self.assertEqual(pool.health["reddit-test"].failure_count, 1)

    def test_transport_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        (articles,), pool = _fetch(handler, _descriptor())
        self.assertEqual(articles, [])
        self.assertEqual(pool.health["reddit-test"].last_error, "TransportFailure")


class TestRateLimitAndKeys(_ResetWarnings):

    def test_empty_bucket_skips_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=REDDIT_BODY)

        (first, second), pool = _fetch(handler, _descriptor(rate_limit=1), clock=lambda: 100.0, times=2)
        self.assertEqual(len(first), 2)
        self.assertEqual(second, [])
        self.assertEqual(len(calls), 1)
        self.assertEqual(pool.health["reddit-test"].skipped_count, 1)

    def test_buckets_are_per_source(self):
        from newsintel.config import Config
        from newsintel.ingest import FetcherPool

        async def run():
            transport = httpx.MockTransport(lambda r: httpx.Response(200, json=REDDIT_BODY))
            async with httpx.AsyncClient(transport=transport) as client:
                pool = FetcherPool(Config(), client=client, clock=lambda: 0.0)
                a = list(await pool.fetch(_descriptor(id="a", rate_limit=1)))
                b = list(await pool.fetch(_descriptor(id="b", rate_limit=1)))
                return a, b

        a, b = asyncio.run(run())
        self.assertEqual((len(a), len(b)), (2, 2))

    def test_missing_key_skips_and_warns_once(self):
        from newsintel import parsers
        from newsintel.config import Config

        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=[])

        desc = _descriptor(
            id="finnhub", endpoint="https://finnhub.test/news?token={api_key}", parser=parsers.FINNHUB,
            api_key_required=True, api_key_env="FINNHUB_API_KEY",
        )
        with self.assertLogs("newsintel._http", level="DEBUG") as cm:
            (first, second), _ = _fetch(handler, desc, config=Config(finnhub_api_key=""), times=2)
        self.assertEqual((first, second), ([], []))
        self.assertEqual(calls, [])
        self.assertEqual([line.split(":", 1)[0] for line in cm.output], ["WARNING", "DEBUG"])

    def test_missing_key_leaves_bucket_full(self):
        from newsintel import parsers
        from newsintel.config import Config
        from newsintel.ingest import FetcherPool

        desc = _descriptor(
            id="finnhub", endpoint="https://finnhub.test/news?token={api_key}", parser=parsers.FINNHUB,
            rate_limit=1, api_key_required=True, api_key_env="FINNHUB_API_KEY",
        )

        async def run():
            transport = httpx.MockTransport(lambda r: httpx.Response(200, json=[]))
            async with httpx.AsyncClient(transport=transport) as client:
                pool = FetcherPool(Config(finnhub_api_key=""), client=client, clock=lambda: 0.0)
                await pool.fetch(desc)
                return pool

        pool = asyncio.run(run())
        self.assertEqual(pool.bucket_for(desc).available, 1)
        self.assertEqual(pool.health["finnhub"].skipped_count, 1)

    def test_key_and_query_substituted(self):
        from newsintel import parsers
        from newsintel.config import Config

        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"hits": []})

        desc = _descriptor(
            id="hn", endpoint="https://hn.test/search?query={query}&key={api_key}", parser=parsers.HACKERNEWS,
            api_key_required=True, api_key_env="HN_TEST_KEY",
        )
        with patch.dict(os.environ, {"HN_TEST_KEY": "k/1"}):
            _fetch(handler, desc, config=Config(), query="gold price")
        self.assertEqual(seen[0].url.params["query"], "gold price")
        self.assertEqual(seen[0].url.params["key"], "k/1")


class TestFeedFetch(_ResetWarnings):

    def test_rss_body(self):
        from newsintel import parsers

        rss = (
            "<rss><channel>"
            "<item><title>Dollar slides</title><link>https://fx.test/1</link><guid>g1</guid></item>"
            "<item><title>Yen firms</title><link>https://fx.test/2</link><guid>g2</guid></item>"
            "</channel></rss>"
        )
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text=rss, headers={"content-type": "application/rss+xml"})

        desc = _descriptor(
            id="fxstreet", transport="syndication-feed", endpoint="https://fx.test/rss", parser=parsers.FEED,
        )
        (articles,), _ = _fetch(handler, desc)
        self.assertEqual([a.title for a in articles], ["Dollar slides", "Yen firms"])
        self.assertIn("rss", seen[0].headers["accept"])

    def test_malformed_feed(self):
        from newsintel import parsers

        def handler(request):
            return httpx.Response(200, text="<rss><channel><item>")

        desc = _descriptor(
            id="fxstreet", transport="syndication-feed", endpoint="https://fx.test/rss", parser=parsers.FEED,
        )
        (articles,), pool = _fetch(handler, desc)
        self.assertEqual(articles, [])
        self.assertEqual(pool.health["fxstreet"].last_error, "ParseFailure")


class TestBuildUrl(unittest.TestCase):

    def test_slots(self):
        from newsintel.ingest import build_url

        desc = _descriptor(endpoint="https://x.test/?q={query}&t={api_key}")
        self.assertEqual(build_url(desc, query="a b", api_key="k"), "https://x.test/?q=a+b&t=k")
        self.assertEqual(build_url(_descriptor()), "https://reddit.test/r/Test/hot.json")

    def test_health_to_dict(self):
        from newsintel.ingest import SourceHealth

        self.assertEqual(json.loads(json.dumps(SourceHealth().to_dict()))["failures"], 0)


class TestRecordIsolation(_ResetWarnings):

    def test_raising_parser_drops_only_that_record(self):
        from newsintel import parsers
        from newsintel.common_types import ProviderParser

        def parse(rec):
            if rec.get("id") == "p1":
                raise RuntimeError("bad record")
            return parsers.parse_reddit(rec)

        desc = _descriptor(parser=ProviderParser("reddit", parsers.extract_reddit, parse))
        with self.assertLogs("newsintel.ingest", level="WARNING") as cm:
            (articles,), pool = _fetch(lambda r: httpx.Response(200, json=REDDIT_BODY), desc)
        self.assertEqual([a.provider_id for a in articles], ["p2"])
        self.assertEqual(pool.health["reddit-test"].failure_count, 0)
        self.assertIn("RuntimeError", cm.output[0])
