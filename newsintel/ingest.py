"""Async fetcher pool: one HTTP GET per source per refresh.

Two transport adapters share one ``httpx.AsyncClient``:

* ``JsonApiAdapter``          – decodes the body as JSON
* ``SyndicationFeedAdapter``  – hands the body text to the feed parser

The pool owns a ``TokenBucket`` and a ``SourceHealth`` record per
source.  ``FetcherPool.fetch`` never raises for provider trouble: every
transport, parse or credential problem is logged (keys redacted) and
turns into an empty result.  No retries inside a refresh.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote_plus

import httpx

from ._http import log_fetch_warning, sanitize_url, warn_once
from .common_types import RawArticle, SourceDescriptor
from .config import Config
from .errors import ParseFailure, TransportFailure, raise_for_status
from .ratelimit import TokenBucket

logger = logging.getLogger(__name__)


# ── Transport adapters ──────────────────────────────────────────

class _Adapter:
    """GET + status mapping + body decoding for one transport."""

    accept = "*/*"

    async def get(
        self, client: httpx.AsyncClient, url: str, *, source_id: str, timeout: float,
    ) -> Any:
        try:
            r = await client.get(url, timeout=timeout, headers={"Accept": self.accept})
        except httpx.TimeoutException:
            raise TransportFailure(
                f"timed out after {timeout:g}s ({sanitize_url(url)})", source_id=source_id,
            ) from None
        except httpx.HTTPError as exc:
            raise TransportFailure(
                f"{type(exc).__name__} for {sanitize_url(url)}", source_id=source_id,
            ) from None
        raise_for_status(r.status_code, f"HTTP {r.status_code} from {sanitize_url(url)}", source_id=source_id)
        return self.decode(r, source_id=source_id)

    def decode(self, r: httpx.Response, *, source_id: str) -> Any:
        raise NotImplementedError


class JsonApiAdapter(_Adapter):
    accept = "application/json"

    def decode(self, r: httpx.Response, *, source_id: str) -> Any:
        try:
            return r.json()
        except (json.JSONDecodeError, ValueError):
            ct = r.headers.get("content-type", "")
            raise ParseFailure(
                f"non-JSON body (content-type={ct!r}, url={sanitize_url(str(r.url))})",
                source_id=source_id,
            ) from None


class SyndicationFeedAdapter(_Adapter):
    accept = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8"

    def decode(self, r: httpx.Response, *, source_id: str) -> Any:
        return r.text


ADAPTERS: dict[str, _Adapter] = {
    "json-api": JsonApiAdapter(),
    "syndication-feed": SyndicationFeedAdapter(),
}


# ── Health bookkeeping ──────────────────────────────────────────

@dataclass
class SourceHealth:
    """Per-source diagnostics; never consulted by the ranking."""

    ok_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    last_error: str = ""
    last_success_ts: float = 0.0
    last_item_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok_count,
            "failures": self.failure_count,
            "skipped": self.skipped_count,
            "last_error": self.last_error,
            "last_success_ts": self.last_success_ts,
            "last_item_count": self.last_item_count,
        }


def build_url(descriptor: SourceDescriptor, *, query: str = "", api_key: str = "") -> str:
    """Fill the ``{query}`` / ``{api_key}`` slots of an endpoint template."""
    url = descriptor.endpoint
    if "{query}" in url:
        url = url.replace("{query}", quote_plus(query or ""))
    if "{api_key}" in url:
        url = url.replace("{api_key}", quote_plus(api_key))
    return url


def _iter_articles(descriptor: SourceDescriptor, records: list[dict[str, Any]]) -> Iterator[RawArticle]:
    for rec in records:
        try:
            raw = descriptor.parser.parse(rec)
        except Exception as exc:
            logger.warning("%s: dropping unparseable record (%s)", descriptor.id, type(exc).__name__)
            continue
        if raw is not None:
            yield raw


class FetcherPool:
    """Owns the HTTP client, token buckets and health records.

    *buckets* and *health* may be passed in so that short-lived pools
    (one per ``asyncio.run``) share rate-limit state across refreshes.
    """

    def __init__(
        self,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        buckets: dict[str, TokenBucket] | None = None,
        health: dict[str, SourceHealth] | None = None,
    ) -> None:
        self.config = config or Config()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.config.effective_fetch_timeout_s,
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
        )
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {} if buckets is None else buckets
        self.health: dict[str, SourceHealth] = {} if health is None else health

    # ── Per-source state ────────────────────────────────────────

    def bucket_for(self, descriptor: SourceDescriptor) -> TokenBucket:
        bucket = self._buckets.get(descriptor.id)
        if bucket is None:
            bucket = TokenBucket(max(1, descriptor.rate_limit), clock=self._clock)
            self._buckets[descriptor.id] = bucket
        return bucket

    def health_for(self, source_id: str) -> SourceHealth:
        return self.health.setdefault(source_id, SourceHealth())

    # ── Fetch ───────────────────────────────────────────────────

    async def fetch(self, descriptor: SourceDescriptor, query: str = "") -> Iterator[RawArticle]:
        """Fetch one source; an empty iterator on any failure.

        The returned iterator is lazy over the already-extracted records
        and can be consumed once.
        """
        health = self.health_for(descriptor.id)

        api_key = ""
        if descriptor.api_key_required:
            api_key = self.config.api_key_for(descriptor.api_key_env)
            if not api_key:
                warn_once(descriptor.id, f"{descriptor.api_key_env or 'API key'} not set; source skipped")
                health.skipped_count += 1
                return iter(())

        if not self.bucket_for(descriptor).try_acquire():
            logger.debug("%s rate-limited locally; skipping this refresh", descriptor.id)
            health.skipped_count += 1
            return iter(())

        url = build_url(descriptor, query=query, api_key=api_key)
        adapter = ADAPTERS[descriptor.transport]
        timeout = self.config.effective_fetch_timeout_s
        try:
            body = await asyncio.wait_for(
                adapter.get(self.client, url, source_id=descriptor.id, timeout=timeout),
                timeout=timeout,
            )
            records = descriptor.parser.extract(body)
        except asyncio.TimeoutError:
            self._record_failure(
                descriptor,
                TransportFailure(f"timed out after {timeout:g}s", source_id=descriptor.id),
            )
            return iter(())
        except Exception as exc:
            self._record_failure(descriptor, exc)
            return iter(())

        health.ok_count += 1
        health.last_success_ts = time.time()
        health.last_item_count = len(records)
        logger.debug("%s returned %d records", descriptor.id, len(records))
        return _iter_articles(descriptor, records)

    def _record_failure(self, descriptor: SourceDescriptor, exc: BaseException) -> None:
        health = self.health_for(descriptor.id)
        health.failure_count += 1
        health.last_error = type(exc).__name__
        log_fetch_warning(descriptor.name, exc)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
