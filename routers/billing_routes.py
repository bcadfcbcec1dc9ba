import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from config.settings import ConfigError, get_settings
from database import get_db
from middleware.rate_limit import admin_rate_limit, limiter
from models.profile import Profile
from schemas.billing import CheckoutIn, CheckoutOut, SubscriptionUpdateIn, SubscriptionUpdateOut
from services.billing import admin
from services.billing.store import get_subscription_by_stripe_id
from services.supabase_auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


def _stripe_api_key() -> str:
    try:
        return get_settings().require("stripe_secret_key")
    except ConfigError as e:
        logger.error("stripe_config_missing: %s", e)
        raise HTTPException(500, detail="Missing Stripe secret key")


@router.post("/create-checkout-session", response_model=CheckoutOut)
@limiter.limit(admin_rate_limit)
def create_checkout_session(
    request: Request,
    payload: CheckoutIn,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_admin),
):
    api_key = _stripe_api_key()
    return_base = (request.headers.get("origin") or get_settings().frontend_url).rstrip("/")

    try:
        url = admin.create_checkout_session(
            db, profile, payload.price_id, return_base, api_key, plan_id=payload.plan_id,
        )
    except stripe.StripeError as e:
        logger.exception("checkout_session_failed user_id=%s", profile.id)
        raise HTTPException(400, detail=f"Could not create checkout session: {e.user_message or 'Stripe error'}")
    return CheckoutOut(url=url)


@router.post("/update-subscription", response_model=SubscriptionUpdateOut)
@limiter.limit(admin_rate_limit)
def update_subscription(
    request: Request,
    payload: SubscriptionUpdateIn,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_admin),
):
    api_key = _stripe_api_key()

    row = get_subscription_by_stripe_id(db, payload.subscription_id)
    if row is None:
        raise HTTPException(404, detail="Subscription not found")

    try:
        action, result = admin.apply_subscription_change(row, payload.status, payload.tier, api_key)
    except (stripe.StripeError, ValueError) as e:
        logger.exception(
            "subscription_change_failed stripe_subscription_id=%s admin_id=%s",
            payload.subscription_id, profile.id,
        )
        raise HTTPException(400, detail=f"Could not update subscription: {e}")

    return SubscriptionUpdateOut(
        success=True,
        message="Subscription updated successfully",
        subscription_id=payload.subscription_id,
        tier=payload.tier,
        status=payload.status,
        action=action,
        stripe_result=result,
    )
