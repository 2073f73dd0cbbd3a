"""Global configuration for the news intelligence pipeline.

All tunables can be overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Hard ceiling for a single provider request.
MAX_FETCH_TIMEOUT_S = 10.0


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_csv(key: str) -> frozenset[str]:
    raw = os.getenv(key, "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── AI gateway (repr=False to prevent accidental logging) ───
    ai_api_key: str = field(default_factory=lambda: os.getenv("NEWSINTEL_AI_API_KEY", ""), repr=False)
    ai_model: str = field(default_factory=lambda: os.getenv("NEWSINTEL_AI_MODEL", "groq-llama"))
    ai_top_n: int = field(default_factory=lambda: _env_int("NEWSINTEL_AI_TOP_N", 15))

    # ── Provider credentials ────────────────────────────────────
    cryptopanic_api_key: str = field(default_factory=lambda: os.getenv("CRYPTOPANIC_API_KEY", ""), repr=False)
    finnhub_api_key: str = field(default_factory=lambda: os.getenv("FINNHUB_API_KEY", ""), repr=False)

    # ── Timeouts ────────────────────────────────────────────────
    fetch_timeout_s: float = field(default_factory=lambda: _env_float("NEWSINTEL_FETCH_TIMEOUT_S", 10.0))
    ai_timeout_s: float = field(default_factory=lambda: _env_float("NEWSINTEL_AI_TIMEOUT_S", 30.0))
    aggregate_budget_s: float = field(default_factory=lambda: _env_float("NEWSINTEL_AGGREGATE_BUDGET_S", 20.0))

    # ── HTTP ────────────────────────────────────────────────────
    user_agent: str = field(default_factory=lambda: os.getenv("NEWSINTEL_USER_AGENT", "newsintel/1.0"))

    # Comma-separated source ids to switch off at startup.
    disabled_sources: frozenset[str] = field(default_factory=lambda: _env_csv("NEWSINTEL_DISABLED_SOURCES"))

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def effective_fetch_timeout_s(self) -> float:
        """Per-request timeout, never above ``MAX_FETCH_TIMEOUT_S``."""
        if self.fetch_timeout_s <= 0:
            return MAX_FETCH_TIMEOUT_S
        return min(self.fetch_timeout_s, MAX_FETCH_TIMEOUT_S)

    def api_key_for(self, env_var: str) -> str:
        """Look up a provider key by the env var name a source declares."""
        known = {
            "CRYPTOPANIC_API_KEY": self.cryptopanic_api_key,
            "FINNHUB_API_KEY": self.finnhub_api_key,
        }
        if env_var in known:
            return known[env_var]
        return os.getenv(env_var, "") if env_var else ""
