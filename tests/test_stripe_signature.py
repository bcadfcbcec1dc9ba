import unittest
from unittest.mock import patch

import stripe

from billing_fixtures import sign_payload
from services.billing.signature import StripeV0Signature, assert_valid_signature, signature_class

SECRET = "whsec_test"
NOW = 1760000000
BODY = b'{"id":"evt_1","type":"customer.subscription.created","data":{"object":{}}}'


def v0_signature(header: str) -> str:
    return header.split("v0=", 1)[1]


class TestSignatureClass(unittest.TestCase):
    def test_default_scheme_is_v0(self):
        self.assertIs(signature_class(), StripeV0Signature)
        self.assertEqual(StripeV0Signature.EXPECTED_SCHEME, "v0")

    def test_other_scheme(self):
        cls = signature_class("v1")
        self.assertTrue(issubclass(cls, stripe.WebhookSignature))
        self.assertEqual(cls.EXPECTED_SCHEME, "v1")
        self.assertIs(signature_class("v1"), cls)


@patch("time.time", return_value=NOW)
class TestAssertValidSignature(unittest.TestCase):
    def test_accepts_fresh_valid_signature(self, _time):
        assert_valid_signature(BODY, sign_payload(BODY, SECRET, timestamp=NOW - 60), SECRET)

    def test_accepts_at_edge_of_tolerance(self, _time):
        assert_valid_signature(BODY, sign_payload(BODY, SECRET, timestamp=NOW - 1800), SECRET)

    def test_rejects_stale_timestamp(self, _time):
        header = sign_payload(BODY, SECRET, timestamp=NOW - 1801)
        with self.assertRaises(stripe.SignatureVerificationError) as ctx:
            assert_valid_signature(BODY, header, SECRET)
        self.assertIn("tolerance", str(ctx.exception))

    def test_custom_tolerance(self, _time):
        header = sign_payload(BODY, SECRET, timestamp=NOW - 120)
        with self.assertRaises(stripe.SignatureVerificationError):
            assert_valid_signature(BODY, header, SECRET, tolerance=60)

    def test_rejects_tampered_body(self, _time):
        header = sign_payload(BODY, SECRET, timestamp=NOW)
        with self.assertRaises(stripe.SignatureVerificationError):
            assert_valid_signature(BODY.replace(b"created", b"deleted"), header, SECRET)

    def test_rejects_wrong_secret(self, _time):
        header = sign_payload(BODY, "whsec_other", timestamp=NOW)
        with self.assertRaises(stripe.SignatureVerificationError):
            assert_valid_signature(BODY, header, SECRET)

    def test_rejects_header_without_v0(self, _time):
        header = sign_payload(BODY, SECRET, timestamp=NOW, scheme="v1")
        with self.assertRaises(stripe.SignatureVerificationError) as ctx:
            assert_valid_signature(BODY, header, SECRET)
        self.assertIn("expected scheme v0", str(ctx.exception))

    def test_rejects_header_without_timestamp(self, _time):
        sig = v0_signature(sign_payload(BODY, SECRET, timestamp=NOW))
        with self.assertRaises(stripe.SignatureVerificationError):
            assert_valid_signature(BODY, f"v0={sig}", SECRET)

    def test_any_matching_signature_is_enough(self, _time):
        sig = v0_signature(sign_payload(BODY, SECRET, timestamp=NOW))
        assert_valid_signature(BODY, f"t={NOW},v0={'0' * 64},v0={sig}", SECRET)

    def test_signature_covers_timestamp(self, _time):
        sig = v0_signature(sign_payload(BODY, SECRET, timestamp=NOW))
        with self.assertRaises(stripe.SignatureVerificationError):
            assert_valid_signature(BODY, f"t={NOW - 5},v0={sig}", SECRET)

    def test_configurable_scheme(self, _time):
        header = sign_payload(BODY, SECRET, timestamp=NOW, scheme="v1")
        assert_valid_signature(BODY, header, SECRET, scheme="v1")

    def test_rejects_non_utf8_body(self, _time):
        header = sign_payload(BODY, SECRET, timestamp=NOW)
        with self.assertRaises(stripe.SignatureVerificationError):
            assert_valid_signature(b"\xff\xfe", header, SECRET)


if __name__ == "__main__":
    unittest.main()
