import json
import logging
import os
import sys
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

import billing_fixtures  # noqa: F401
from fastapi.testclient import TestClient

from config.logging_config import JsonFormatter, configure_logging
from config.settings import ConfigError, get_settings
from utils.converters import from_unix, to_iso


class TestSettings(unittest.TestCase):
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = get_settings()
        self.assertEqual(settings.stripe_signature_scheme, "v0")
        self.assertEqual(settings.stripe_webhook_tolerance, 1800)
        self.assertEqual(settings.cors_origins, [])

    def test_require_missing(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigError):
                get_settings().require("stripe_webhook_secret")

    def test_reads_environment_per_call(self):
        with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": "whsec_a"}):
            self.assertEqual(get_settings().require("stripe_webhook_secret"), "whsec_a")
        with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": "whsec_b"}):
            self.assertEqual(get_settings().require("stripe_webhook_secret"), "whsec_b")

    def test_bad_tolerance(self):
        with patch.dict(os.environ, {"STRIPE_WEBHOOK_TOLERANCE_SECONDS": "half an hour"}):
            with self.assertRaises(ConfigError):
                get_settings()

    def test_cors_origins_split(self):
        with patch.dict(os.environ, {"CORS_ORIGINS": "https://a.example.com, https://b.example.com,"}):
            self.assertEqual(get_settings().cors_origins, ["https://a.example.com", "https://b.example.com"])


class TestConverters(unittest.TestCase):
    def test_from_unix(self):
        self.assertEqual(from_unix(0), datetime(1970, 1, 1, tzinfo=timezone.utc))
        self.assertIsNone(from_unix(None))

    def test_to_iso_treats_naive_as_utc(self):
        self.assertEqual(to_iso(datetime(2026, 1, 2, 3, 4, 5)), "2026-01-02T03:04:05+00:00")
        self.assertEqual(to_iso(from_unix(1760000000)), "2025-10-09T08:53:20+00:00")


class TestJsonFormatter(unittest.TestCase):
    def test_single_line_json(self):
        record = logging.LogRecord("billing", logging.INFO, __file__, 1, "payment_failed invoice_id=%s", ("in_1",), None)
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["logger"], "billing")
        self.assertEqual(payload["message"], "payment_failed invoice_id=in_1")

    def test_context_fields_become_keys(self):
        record = logging.LogRecord("billing", logging.INFO, __file__, 1, "request_finished", (), None)
        record.request_id = "req-42"
        record.status = 200
        record.duration_ms = 3.2
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["request_id"], "req-42")
        self.assertEqual(payload["status"], 200)
        self.assertEqual(payload["duration_ms"], 3.2)
        self.assertNotIn("method", payload)

    def test_exception_is_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("billing", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        payload = json.loads(JsonFormatter().format(record))
        self.assertIn("ValueError: boom", payload["exception"])


class TestConfigureLogging(unittest.TestCase):
    def setUp(self):
        self.root = logging.getLogger()
        self.saved = (self.root.handlers[:], self.root.level)

    def tearDown(self):
        self.root.handlers[:], level = self.saved
        self.root.setLevel(level)

    def test_json_handler_replaces_existing(self):
        configure_logging(level="debug", use_json=True)
        configure_logging(level="debug", use_json=True)
        self.assertEqual(len(self.root.handlers), 1)
        self.assertIsInstance(self.root.handlers[0].formatter, JsonFormatter)
        self.assertEqual(self.root.level, logging.DEBUG)
        self.assertEqual(logging.getLogger("stripe").level, logging.WARNING)


class TestRequestLogging(unittest.TestCase):
    def test_request_id_is_logged_and_echoed(self):
        from main import app

        client = TestClient(app)
        with self.assertLogs("middleware.request_logging", level="INFO") as logs:
            resp = client.get("/health", headers={"X-Request-ID": "req-42"})

        self.assertEqual(resp.headers["X-Request-ID"], "req-42")
        record = logs.records[-1]
        self.assertEqual(record.request_id, "req-42")
        self.assertEqual(record.path, "/health")
        self.assertEqual(record.status, 200)


if __name__ == "__main__":
    unittest.main()
