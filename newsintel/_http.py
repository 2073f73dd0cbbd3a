"""Shared HTTP helpers for the provider adapters and the AI gateway.

Centralises URL/exception sanitisation so that API keys are never logged
in plain text, regardless of which adapter raises the error.
"""

from __future__ import annotations

import logging
import re
import threading

from .errors import TransportFailure

logger = logging.getLogger(__name__)

# Regex to strip API keys/tokens from URLs before logging.
_TOKEN_RE = re.compile(r"(apikey|api_key|auth_token|token|key)=[^&\s]+", re.IGNORECASE)
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)

# ── Repeated-failure suppression ────────────────────────────────
# A provider that is down fails identically on every refresh.  Warn on
# the first occurrence per (label, failure kind), then drop to DEBUG.
_WARNED: set[tuple[str, str]] = set()
_warned_lock = threading.Lock()


def sanitize_url(url: str) -> str:
    """Remove apikey/token query params from a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", url)


def sanitize_exc(exc: BaseException) -> str:
    """Strip API keys/tokens from exception text for safe logging."""
    text = _TOKEN_RE.sub(r"\1=***", str(exc) or type(exc).__name__)
    return _BEARER_RE.sub(r"\1***", text)


def _failure_kind(exc: BaseException) -> str:
    status = getattr(exc, "status", None)
    if isinstance(exc, TransportFailure) and status is not None:
        return f"http-{status}"
    return type(exc).__name__


def _first_time(label: str, kind: str) -> bool:
    with _warned_lock:
        seen = (label, kind) in _WARNED
        _WARNED.add((label, kind))
    return not seen


def log_fetch_warning(label: str, exc: BaseException) -> None:
    """Log a fetch failure, suppressing repeated identical ones.

    The first failure of a given kind (HTTP status or exception type)
    for *label* is logged at WARNING; later ones at DEBUG only.
    """
    msg = sanitize_exc(exc)
    if _first_time(label, _failure_kind(exc)):
        logger.warning("%s fetch failed: %s", label, msg)
    else:
        logger.debug("%s fetch failed (repeated, suppressed): %s", label, msg)


def warn_once(label: str, message: str) -> None:
    """WARNING the first time *message* is seen for *label*, DEBUG after."""
    if _first_time(label, message):
        logger.warning("%s: %s", label, message)
    else:
        logger.debug("%s: %s", label, message)


def reset_warnings() -> None:
    """Forget which failures were already reported."""
    with _warned_lock:
        _WARNED.clear()
