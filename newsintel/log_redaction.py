"""Secret redaction for log output.

Provides:
  - ``redact_secrets(msg)``         : strip provider/gateway keys from a string
  - ``LogRedactionFilter``          : ``logging.Filter`` that auto-redacts
  - ``apply_global_log_redaction()``: attach the filter to the root handlers

Usage::

    from newsintel.log_redaction import apply_global_log_redaction
    apply_global_log_redaction()  # call once at startup, after basicConfig
"""
from __future__ import annotations

import logging
import re

_SENSITIVE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # Bearer headers sent to the model gateway
    ("bearer", re.compile(r"Bearer\s+[A-Za-z0-9._\-]+", re.IGNORECASE)),
    # OpenAI / Groq style secret keys
    ("openai_key", re.compile(r"\bsk-[A-Za-z0-9_\-]{16,}")),
    ("groq_key", re.compile(r"\bgsk_[A-Za-z0-9]{16,}")),
    # Query-string credentials (CryptoPanic auth_token, Finnhub token, ...)
    (
        "query_token",
        re.compile(r"(?:auth_token|api[_-]?key|apikey|token)\s*[:=]\s*[\"']?[^\s&'\"]+", re.IGNORECASE),
    ),
]

_REPLACEMENT = "***REDACTED***"


def redact_secrets(msg: str, replacement: str = _REPLACEMENT) -> str:
    """Return *msg* with all recognised secret patterns replaced."""
    if not msg:
        return msg
    result = msg
    for _name, pattern in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class LogRedactionFilter(logging.Filter):
    """Redacts the message template and any string arguments."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if record.msg and isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)
        if isinstance(record.args, dict):
            record.args = {
                k: redact_secrets(v) if isinstance(v, str) else v
                for k, v in record.args.items()
            }
        elif isinstance(record.args, tuple):
            record.args = tuple(redact_secrets(v) if isinstance(v, str) else v for v in record.args)
        return True


def apply_global_log_redaction() -> None:
    """Attach :class:`LogRedactionFilter` to every root-logger handler."""
    filt = LogRedactionFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(filt)
