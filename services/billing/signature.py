"""
Verification of Stripe webhook signatures.

The `stripe-signature` header carries a timestamp and one or more HMAC
signatures: `t=<unix-seconds>,v0=<hex>`. stripe.Webhook.construct_event
only accepts `v1`, so verification goes through a WebhookSignature
subclass whose expected scheme is configurable.
"""
import functools
import logging
from typing import Optional, Union

import stripe

from config.settings import DEFAULT_SIGNATURE_SCHEME, DEFAULT_WEBHOOK_TOLERANCE_SECONDS

logger = logging.getLogger(__name__)


class StripeV0Signature(stripe.WebhookSignature):
    EXPECTED_SCHEME = DEFAULT_SIGNATURE_SCHEME


@functools.lru_cache(maxsize=None)
def signature_class(scheme: str = DEFAULT_SIGNATURE_SCHEME) -> type:
    if scheme == StripeV0Signature.EXPECTED_SCHEME:
        return StripeV0Signature
    return type(f"Stripe{scheme.capitalize()}Signature", (stripe.WebhookSignature,), {"EXPECTED_SCHEME": scheme})


def assert_valid_signature(
    payload: Union[bytes, str],
    header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
    scheme: str = DEFAULT_SIGNATURE_SCHEME,
) -> None:
    """
    Check the raw request body against the signature header.

    Raises stripe.SignatureVerificationError when the header lacks `t=` or
    the scheme entry, when no supplied signature matches, or when the
    timestamp is older than `tolerance` seconds.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise stripe.SignatureVerificationError("Payload is not valid UTF-8", header)
    signature_class(scheme).verify_header(payload, header, secret, tolerance=tolerance)
