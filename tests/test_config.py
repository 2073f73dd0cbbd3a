"""Tests for env-driven configuration, token buckets and log redaction."""

from __future__ import annotations

import logging
import os
import unittest
from unittest.mock import patch


class TestConfigEnvVarsAtInstantiationTime(unittest.TestCase):
    """Env vars are read when Config() is called, not at import."""

    def test_env_var_read_at_init(self):
        from newsintel.config import Config

        with patch.dict(os.environ, {"NEWSINTEL_AI_API_KEY": "gsk_abc"}):
            self.assertEqual(Config().ai_api_key, "gsk_abc")
        with patch.dict(os.environ, {"NEWSINTEL_AI_API_KEY": ""}):
            self.assertEqual(Config().ai_api_key, "")

    def test_defaults(self):
        from newsintel.config import Config

        keys = [k for k in os.environ if k.startswith("NEWSINTEL_")]
        with patch.dict(os.environ, {}, clear=False):
            for k in keys:
                os.environ.pop(k)
            cfg = Config()
        self.assertEqual(cfg.ai_model, "groq-llama")
        self.assertEqual(cfg.ai_top_n, 15)
        self.assertEqual(cfg.fetch_timeout_s, 10.0)
        self.assertEqual(cfg.ai_timeout_s, 30.0)
        self.assertEqual(cfg.aggregate_budget_s, 20.0)
        self.assertEqual(cfg.disabled_sources, frozenset())

    def test_bad_numbers_fall_back(self):
        from newsintel.config import Config

        with patch.dict(os.environ, {"NEWSINTEL_AI_TOP_N": "lots", "NEWSINTEL_AI_TIMEOUT_S": "x"}):
            cfg = Config()
        self.assertEqual(cfg.ai_top_n, 15)
        self.assertEqual(cfg.ai_timeout_s, 30.0)

    def test_fetch_timeout_clamped(self):
        from newsintel.config import Config

        self.assertEqual(Config(fetch_timeout_s=60).effective_fetch_timeout_s, 10.0)
        self.assertEqual(Config(fetch_timeout_s=2.5).effective_fetch_timeout_s, 2.5)
        self.assertEqual(Config(fetch_timeout_s=0).effective_fetch_timeout_s, 10.0)

    def test_secrets_not_in_repr(self):
        from newsintel.config import Config

        cfg = Config(ai_api_key="gsk_secret", cryptopanic_api_key="cp_secret", finnhub_api_key="fh_secret")
        text = repr(cfg)
        for secret in ("gsk_secret", "cp_secret", "fh_secret"):
            self.assertNotIn(secret, text)

    def test_api_key_for(self):
        from newsintel.config import Config

        cfg = Config(cryptopanic_api_key="cp", finnhub_api_key="fh")
        self.assertEqual(cfg.api_key_for("CRYPTOPANIC_API_KEY"), "cp")
        self.assertEqual(cfg.api_key_for("FINNHUB_API_KEY"), "fh")
        self.assertEqual(cfg.api_key_for(""), "")
        with patch.dict(os.environ, {"SOME_OTHER_KEY": "zz"}):
            self.assertEqual(cfg.api_key_for("SOME_OTHER_KEY"), "zz")


class TestTokenBucket(unittest.TestCase):

    def test_capacity_and_refill(self):
        from newsintel.ratelimit import TokenBucket

        now = [0.0]
        bucket = TokenBucket(2, clock=lambda: now[0])
        self.assertTrue(bucket.try_acquire())
        self.assertTrue(bucket.try_acquire())
        self.assertFalse(bucket.try_acquire())
        now[0] = 30.0  # 2/min → one token per 30 s
        self.assertTrue(bucket.try_acquire())
        self.assertFalse(bucket.try_acquire())

    def test_never_exceeds_capacity(self):
        from newsintel.ratelimit import TokenBucket

        now = [0.0]
        bucket = TokenBucket(3, clock=lambda: now[0])
        now[0] = 10_000.0
        self.assertEqual(bucket.available, 3)

    def test_rejects_non_positive_rate(self):
        from newsintel.errors import ConfigError
        from newsintel.ratelimit import TokenBucket

        with self.assertRaises(ConfigError):
            TokenBucket(0)
        with self.assertRaises(ValueError):
            TokenBucket(-5)


class TestLogRedaction(unittest.TestCase):

    def test_redact_patterns(self):
        from newsintel.log_redaction import redact_secrets

        self.assertNotIn("gsk_ABCDEFGHIJKLMNOPQRST", redact_secrets("key gsk_ABCDEFGHIJKLMNOPQRST used"))
        self.assertNotIn("sk-abcdefghijklmnop1234", redact_secrets("sk-abcdefghijklmnop1234"))
        self.assertNotIn("s3cr3t", redact_secrets("Authorization: Bearer s3cr3t"))
        self.assertNotIn("cp123", redact_secrets("GET /posts/?auth_token=cp123&public=true"))
        self.assertEqual(redact_secrets("nothing to hide"), "nothing to hide")

    def test_filter_redacts_args(self):
        from newsintel.log_redaction import LogRedactionFilter

        record = logging.LogRecord(
            "x", logging.WARNING, __file__, 1, "fetch %s failed", ("https://f.test/?token=abc123",), None,
        )
        self.assertTrue(LogRedactionFilter().filter(record))
        self.assertNotIn("abc123", record.getMessage())

    def test_sanitize_helpers(self):
        from newsintel._http import sanitize_exc, sanitize_url

        self.assertEqual(
            sanitize_url("https://finnhub.io/api/v1/news?category=general&token=abc"),
            "https://finnhub.io/api/v1/news?category=general&token=***",
        )
        self.assertNotIn("abc", sanitize_exc(RuntimeError("boom auth_token=abc Bearer xyz")))
        self.assertNotIn("xyz", sanitize_exc(RuntimeError("boom auth_token=abc Bearer xyz")))
