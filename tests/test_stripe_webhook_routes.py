import asyncio
import json
import os
import time
import unittest
from unittest.mock import patch

from billing_fixtures import add_profile, add_subscription, event, invoice_object, make_session_factory, sign_payload, subscription_object

from fastapi.testclient import TestClient

from database import get_db
from main import app
from models.payment import Payment
from models.user_subscription import UserSubscription

WEBHOOK_SECRET = "whsec_test"
ENV = {
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "STRIPE_SIGNATURE_SCHEME": "v0",
}


class TestStripeWebhookRoute(unittest.TestCase):
    def setUp(self):
        self.env_patcher = patch.dict(os.environ, ENV)
        self.env_patcher.start()

        self.engine, self.SessionLocal = make_session_factory()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)
        self.db = self.SessionLocal()
        add_profile(self.db)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.db.close()
        self.engine.dispose()
        self.env_patcher.stop()

    def post(self, body: bytes, header=None):
        headers = {"content-type": "application/json"}
        if header is not None:
            headers["stripe-signature"] = header
        return self.client.post("/stripe-webhook", content=body, headers=headers)

    def signed_post(self, payload: dict, timestamp=None):
        body = json.dumps(payload).encode()
        return self.post(body, sign_payload(body, WEBHOOK_SECRET, timestamp=timestamp))

    def count(self, model):
        self.db.expire_all()
        return self.db.query(model).count()

    def test_valid_event_is_processed(self):
        resp = self.signed_post(event("customer.subscription.created", subscription_object()))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "ok")
        self.assertEqual(self.count(UserSubscription), 1)

    def test_unknown_event_type_returns_ok(self):
        resp = self.signed_post(event("customer.created", {"id": "cus_2"}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "ok")

    def test_missing_signature_header(self):
        body = json.dumps(event("customer.subscription.created", subscription_object())).encode()
        resp = self.post(body)

        self.assertEqual(resp.status_code, 400)
        self.assertTrue(resp.text.startswith("Webhook Error:"))
        self.assertEqual(self.count(UserSubscription), 0)

    def test_header_without_v0_is_rejected(self):
        body = json.dumps(event("customer.subscription.created", subscription_object())).encode()
        resp = self.post(body, f"t={int(time.time())}")

        self.assertEqual(resp.status_code, 400)
        self.assertTrue(resp.text.startswith("Webhook Error:"))
        self.assertEqual(self.count(UserSubscription), 0)

    def test_tampered_body_is_rejected(self):
        body = json.dumps(event("customer.subscription.created", subscription_object())).encode()
        header = sign_payload(body, WEBHOOK_SECRET)
        tampered = body.replace(b'"active"', b'"trialing"')

        resp = self.post(tampered, header)

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.count(UserSubscription), 0)

    def test_stale_signature_is_rejected(self):
        resp = self.signed_post(
            event("customer.subscription.created", subscription_object()),
            timestamp=int(time.time()) - 3600,
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("tolerance", resp.text)
        self.assertEqual(self.count(UserSubscription), 0)

    def test_non_json_body_is_rejected(self):
        body = b"not json"
        resp = self.post(body, sign_payload(body, WEBHOOK_SECRET))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Webhook Error: Invalid payload")

    def test_handler_exception_returns_500(self):
        with patch("routers.stripe_webhook_routes.dispatch_event", side_effect=RuntimeError("db down")):
            resp = self.signed_post(event("customer.subscription.created", subscription_object()))

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "db down"})

    def test_dispatch_runs_off_the_event_loop(self):
        seen = {}

        def record_loop(db, payload, api_key):
            try:
                asyncio.get_running_loop()
                seen["in_loop"] = True
            except RuntimeError:
                seen["in_loop"] = False
            return True

        with patch("routers.stripe_webhook_routes.dispatch_event", side_effect=record_loop):
            resp = self.signed_post(event("customer.subscription.created", subscription_object()))

        self.assertEqual(resp.status_code, 200)
        self.assertFalse(seen["in_loop"])

    def test_missing_configuration_returns_500(self):
        with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": ""}):
            resp = self.signed_post(event("customer.subscription.created", subscription_object()))

        self.assertEqual(resp.status_code, 500)
        self.assertIn("STRIPE_WEBHOOK_SECRET", resp.json()["error"])

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_failed_payment_flow(self):
        add_subscription(self.db)
        resp = self.signed_post(event("invoice.payment_failed", invoice_object()))

        self.assertEqual(resp.status_code, 200)
        self.db.expire_all()
        row = self.db.query(Payment).one()
        self.assertEqual(row.status, "failed")
        self.assertEqual(row.failure_reason, "Payment failed")


if __name__ == "__main__":
    unittest.main()
