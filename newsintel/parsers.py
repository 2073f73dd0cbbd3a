"""Provider parse functions: decoded payload → flat records → RawArticle.

Each provider gets an ``extract`` (payload → list of record dicts) and a
``parse`` (record → ``RawArticle``).  They are pure and intentionally
**schema-tolerant**: every field may be missing, ``null`` or of the
wrong type without raising.  Only a payload whose top-level container is
unusable raises ``ParseFailure``.

Community boards (Reddit):
    data.children[].data.{id,title,created_utc,ups,num_comments,permalink}

News wire (CryptoCompare):
    Data[].{id,title,body,source,url,imageurl,published_on,categories,tags}

Hacker stories (Algolia HN search):
    hits[].{objectID,title,url,created_at,author,num_comments}

CryptoPanic:
    results[].{id,title,published_at,url,source.title,votes,currencies[].code}

Finnhub:
    [].{id,headline,summary,url,image,datetime,source,category}

Syndication feeds:
    RSS 2.0 ``<item>`` or Atom ``<entry>`` elements.
"""

from __future__ import annotations

import html
import logging
import math
import re
import xml.etree.ElementTree as ET
from typing import Any

from .common_types import ProviderParser, RawArticle
from .errors import ParseFailure
from .normalize import seconds_to_ms, stable_digest, to_epoch_ms

logger = logging.getLogger(__name__)

_MAX_DESCRIPTION = 500

# Strip HTML tags from feed descriptions.
_HTML_TAG_RE = re.compile(r"<[^>]+>")


# ── Shared helpers ──────────────────────────────────────────────

def _as_dict(x: Any) -> dict[str, Any]:
    return x if isinstance(x, dict) else {}


def _as_list(x: Any) -> list[Any]:
    return x if isinstance(x, list) else []


def _dicts(x: Any) -> list[dict[str, Any]]:
    """Keep only dict entries of a list-ish value."""
    return [it for it in _as_list(x) if isinstance(it, dict)]


def _str(x: Any) -> str:
    if x is None or isinstance(x, (dict, list)):
        return ""
    return str(x).strip()


def _int(x: Any) -> int:
    if isinstance(x, bool):
        return 0
    try:
        value = float(x)
    except (TypeError, ValueError, OverflowError):
        return 0
    return int(value) if math.isfinite(value) else 0


def _split_pipe(x: Any) -> list[str]:
    return [p.strip() for p in _str(x).split("|") if p.strip()]


def _strip_html(text: str) -> str:
    """Drop tags, then decode entities left over from double escaping."""
    return " ".join(html.unescape(_HTML_TAG_RE.sub(" ", text)).split())


def _require_dict(payload: Any, source: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ParseFailure(f"{source}: expected JSON object, got {type(payload).__name__}")
    return payload


# ── Reddit ──────────────────────────────────────────────────────

def extract_reddit(payload: Any) -> list[dict[str, Any]]:
    body = _require_dict(payload, "reddit")
    children = _dicts(_as_dict(body.get("data")).get("children"))
    return [_as_dict(child.get("data")) for child in children if isinstance(child.get("data"), dict)]


def parse_reddit(rec: dict[str, Any]) -> RawArticle | None:
    post_id = _str(rec.get("id"))
    title = _str(rec.get("title"))
    if not post_id or not title:
        return None
    permalink = _str(rec.get("permalink"))
    url = f"https://reddit.com{permalink}" if permalink else _str(rec.get("url"))
    thumb = _str(rec.get("thumbnail"))
    flair = _str(rec.get("link_flair_text"))
    return RawArticle(
        provider_id=post_id,
        title=title,
        description=_str(rec.get("selftext"))[:_MAX_DESCRIPTION],
        url=url,
        image_url=thumb if thumb.startswith("http") else None,
        author=_str(rec.get("author")) or None,
        published_ms=seconds_to_ms(rec.get("created_utc")),
        upvotes=_int(rec.get("ups")),
        comments=_int(rec.get("num_comments")),
        tags=[flair] if flair else [],
    )


# ── CryptoCompare ───────────────────────────────────────────────

def extract_cryptocompare(payload: Any) -> list[dict[str, Any]]:
    return _dicts(_require_dict(payload, "cryptocompare").get("Data"))


def parse_cryptocompare(rec: dict[str, Any]) -> RawArticle | None:
    news_id = _str(rec.get("id"))
    title = _str(rec.get("title"))
    if not news_id or not title:
        return None
    source_info = _as_dict(rec.get("source_info"))
    return RawArticle(
        provider_id=news_id,
        title=title,
        description=_str(rec.get("body"))[:_MAX_DESCRIPTION],
        url=_str(rec.get("url")),
        image_url=_str(rec.get("imageurl")) or None,
        author=_str(rec.get("source")) or None,
        published_ms=seconds_to_ms(rec.get("published_on")),
        upvotes=_int(rec.get("upvotes")),
        tags=_split_pipe(rec.get("categories")) + _split_pipe(rec.get("tags")),
        source_name=_str(source_info.get("name")) or _str(rec.get("source")),
    )


# ── Hacker News (Algolia) ───────────────────────────────────────

def extract_hackernews(payload: Any) -> list[dict[str, Any]]:
    return _dicts(_require_dict(payload, "hackernews").get("hits"))


def parse_hackernews(rec: dict[str, Any]) -> RawArticle | None:
    object_id = _str(rec.get("objectID"))
    title = _str(rec.get("title")) or _str(rec.get("story_title"))
    if not object_id or not title:
        return None
    return RawArticle(
        provider_id=object_id,
        title=title,
        url=_str(rec.get("url")) or f"https://news.ycombinator.com/item?id={object_id}",
        author=_str(rec.get("author")) or None,
        published_ms=to_epoch_ms(_str(rec.get("created_at"))) or seconds_to_ms(rec.get("created_at_i")),
        upvotes=_int(rec.get("points")),
        comments=_int(rec.get("num_comments")),
    )


# ── CryptoPanic ─────────────────────────────────────────────────

def extract_cryptopanic(payload: Any) -> list[dict[str, Any]]:
    return _dicts(_require_dict(payload, "cryptopanic").get("results"))


def parse_cryptopanic(rec: dict[str, Any]) -> RawArticle | None:
    post_id = _str(rec.get("id"))
    title = _str(rec.get("title"))
    if not post_id or not title:
        return None
    votes = _as_dict(rec.get("votes"))
    currencies = [_str(c.get("code")).upper() for c in _dicts(rec.get("currencies"))]
    return RawArticle(
        provider_id=post_id,
        title=title,
        url=_str(rec.get("url")),
        published_ms=to_epoch_ms(_str(rec.get("published_at"))),
        upvotes=_int(votes.get("positive")) + _int(votes.get("liked")),
        comments=_int(votes.get("comments")),
        tags=[c for c in currencies if c],
        source_name=_str(_as_dict(rec.get("source")).get("title")),
    )


# ── Finnhub ─────────────────────────────────────────────────────

def extract_finnhub(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise ParseFailure(f"finnhub: expected JSON array, got {type(payload).__name__}")
    return _dicts(payload)


def parse_finnhub(rec: dict[str, Any]) -> RawArticle | None:
    news_id = _str(rec.get("id"))
    title = _str(rec.get("headline"))
    if not news_id or not title:
        return None
    category = _str(rec.get("category"))
    return RawArticle(
        provider_id=news_id,
        title=title,
        description=_str(rec.get("summary"))[:_MAX_DESCRIPTION],
        url=_str(rec.get("url")),
        image_url=_str(rec.get("image")) or None,
        published_ms=seconds_to_ms(rec.get("datetime")),
        tags=[category] if category else [],
        source_name=_str(rec.get("source")),
    )


# ── Syndication feeds (RSS 2.0 / Atom) ──────────────────────────

def _local(tag: str) -> str:
    """Tag name without its XML namespace."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child_text(el: ET.Element, *names: str) -> str:
    for child in el:
        if _local(child.tag) in names:
            text = "".join(child.itertext()).strip()
            if text:
                return text
    return ""


def _atom_link(el: ET.Element) -> str:
    for child in el:
        if _local(child.tag) == "link":
            href = child.get("href")
            if href and child.get("rel", "alternate") == "alternate":
                return href.strip()
    return ""


def _image(el: ET.Element) -> str:
    for child in el:
        name = _local(child.tag)
        if name in ("enclosure", "content", "thumbnail") and child.get("url"):
            if name != "enclosure" or (child.get("type") or "").startswith("image"):
                return child.get("url", "").strip()
    return ""


def extract_feed(document: Any) -> list[dict[str, Any]]:
    """Flatten an RSS/Atom document into one dict per item/entry."""
    if not isinstance(document, str) or not document.strip():
        raise ParseFailure("feed: empty document")
    try:
        root = ET.fromstring(document.strip())
    except ET.ParseError as exc:
        raise ParseFailure(f"feed: malformed XML ({exc})") from None

    records: list[dict[str, Any]] = []
    for el in root.iter():
        name = _local(el.tag)
        if name not in ("item", "entry"):
            continue
        records.append({
            "guid": _child_text(el, "guid", "id"),
            "title": _child_text(el, "title"),
            "link": _child_text(el, "link") or _atom_link(el),
            "published": _child_text(el, "pubDate", "published", "updated", "date"),
            "description": _child_text(el, "description", "summary", "encoded", "content"),
            "author": _child_text(el, "creator", "author", "name"),
            "categories": [
                ("".join(c.itertext()).strip() or c.get("term", "")).strip()
                for c in el if _local(c.tag) == "category"
            ],
            "image": _image(el),
        })
    return records


def parse_feed_entry(rec: dict[str, Any]) -> RawArticle | None:
    title = _strip_html(_str(rec.get("title")))
    if not title:
        return None
    link = _str(rec.get("link"))
    guid = _str(rec.get("guid"))
    provider_id = stable_digest(guid or link or title)
    categories = [c for c in (_str(x) for x in _as_list(rec.get("categories"))) if c]
    return RawArticle(
        provider_id=provider_id,
        title=title,
        description=_strip_html(_str(rec.get("description")))[:_MAX_DESCRIPTION],
        url=link,
        image_url=_str(rec.get("image")) or None,
        author=_str(rec.get("author")) or None,
        published_ms=to_epoch_ms(_str(rec.get("published"))),
        tags=categories,
    )


# ── Parser values referenced by source descriptors ──────────────

REDDIT = ProviderParser("reddit", extract_reddit, parse_reddit)
CRYPTOCOMPARE = ProviderParser("cryptocompare", extract_cryptocompare, parse_cryptocompare)
HACKERNEWS = ProviderParser("hackernews", extract_hackernews, parse_hackernews)
CRYPTOPANIC = ProviderParser("cryptopanic", extract_cryptopanic, parse_cryptopanic)
FINNHUB = ProviderParser("finnhub", extract_finnhub, parse_finnhub)
FEED = ProviderParser("feed", extract_feed, parse_feed_entry)
