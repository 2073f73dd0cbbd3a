"""Structured error taxonomy for the news pipeline.

Adapters raise these; the fetcher pool and the enrichment client catch
them at their boundary so that nothing escapes into the aggregator.
Partial enrichment and cancellation are ordinary outcomes, not errors.
"""
from __future__ import annotations


class NewsIntelError(Exception):
    """Base error for all newsintel subsystems."""
    pass


class TransportFailure(NewsIntelError):
    """Network error, timeout, or non-2xx response."""

    def __init__(self, message: str, *, source_id: str = "", status: int | None = None):
        self.source_id = source_id
        self.status = status
        super().__init__(message)


class RateLimited(TransportFailure):
    """HTTP 429 from a provider or the AI gateway."""

    def __init__(self, message: str, *, source_id: str = ""):
        super().__init__(message, source_id=source_id, status=429)


class CreditsExhausted(TransportFailure):
    """HTTP 402 from the AI gateway."""

    def __init__(self, message: str, *, source_id: str = ""):
        super().__init__(message, source_id=source_id, status=402)


class ParseFailure(NewsIntelError):
    """Payload not interpretable by the adapter or parser."""

    def __init__(self, message: str, *, source_id: str = ""):
        self.source_id = source_id
        super().__init__(message)


class ConfigError(NewsIntelError, ValueError):
    """Invalid configuration value (bad rate, time range or sort key)."""
    pass


def raise_for_status(status: int, message: str, *, source_id: str = "") -> None:
    """Map a non-2xx HTTP status onto the taxonomy."""
    if 200 <= status < 300:
        return
    if status == 429:
        raise RateLimited(message, source_id=source_id)
    if status == 402:
        raise CreditsExhausted(message, source_id=source_id)
    raise TransportFailure(message, source_id=source_id, status=status)
