# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

Applied to the admin billing routes only. The Stripe webhook is never
limited: a 429 there would just turn into redelivery from Stripe.

Usage in route files:
    from middleware.rate_limit import admin_rate_limit, limiter

    @router.post("/update-subscription")
    @limiter.limit(admin_rate_limit)
    def update_subscription(request: Request, ...):
        ...
"""
import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from jose import jwt, JWTError

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """
    Identify the caller for rate-limiting: the Supabase user id (sub claim)
    when a bearer token is present, otherwise the client IP.
    """
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        try:
            # Unverified: only buckets the limit. Auth is enforced by require_admin.
            payload = jwt.get_unverified_claims(token)
            sub = payload.get("sub")
            if sub:
                return f"user:{sub}"
        except JWTError:
            logger.debug("rate_limit_key_unparseable_token")

    return get_remote_address(request)


DEFAULT_ADMIN_RATE_LIMIT = "10/minute"


def admin_rate_limit() -> str:
    """Limit for the admin billing routes; slowapi re-reads it per request."""
    return os.getenv("RATE_LIMIT_ADMIN") or DEFAULT_ADMIN_RATE_LIMIT


limiter = Limiter(
    key_func=_get_rate_limit_key,
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
)
