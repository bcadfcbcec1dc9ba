# services/billing/admin.py
"""
Admin-triggered Stripe operations: checkout for a profile and
cancel / resume / re-tier of an existing subscription.

These call Stripe only. Local rows change when the resulting
customer.subscription.* webhooks arrive.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from models.profile import Profile
from models.user_subscription import UserSubscription

logger = logging.getLogger(__name__)

ACTION_CANCEL = "cancel"
ACTION_RESUME = "resume"
ACTION_CHANGE_TIER = "change_tier"
ACTION_NONE = "none"


def ensure_customer(db: Session, profile: Profile, api_key: str) -> str:
    if profile.stripe_customer_id:
        return profile.stripe_customer_id

    customer = stripe.Customer.create(
        email=profile.email,
        metadata={"user_id": profile.id},
        api_key=api_key,
    )
    profile.stripe_customer_id = customer["id"]
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("stripe_customer_created user_id=%s customer_id=%s", profile.id, customer["id"])
    return profile.stripe_customer_id


def create_checkout_session(
    db: Session,
    profile: Profile,
    price_id: str,
    return_base_url: str,
    api_key: str,
    plan_id: Optional[str] = None,
) -> str:
    customer_id = ensure_customer(db, profile, api_key)
    params: Dict[str, Any] = {
        "payment_method_types": ["card"],
        "line_items": [{"price": price_id, "quantity": 1}],
        "mode": "subscription",
        "success_url": f"{return_base_url}/dashboard?success=true",
        "cancel_url": f"{return_base_url}/dashboard?canceled=true",
        "customer": customer_id,
    }
    if plan_id:
        params["metadata"] = {"plan_id": plan_id}

    session = stripe.checkout.Session.create(api_key=api_key, **params)
    logger.info("checkout_session_created user_id=%s customer_id=%s", profile.id, customer_id)
    return session["url"]


def plan_subscription_change(
    row: UserSubscription,
    status: Optional[str],
    tier: Optional[str],
) -> str:
    if status == "canceled" and row.status != "canceled":
        return ACTION_CANCEL
    if status == "active" and row.status == "canceled":
        return ACTION_RESUME
    if tier and tier != row.subscription_tier:
        return ACTION_CHANGE_TIER
    return ACTION_NONE


def resolve_price_id(tier: str, api_key: str) -> str:
    """A tier is either a price id or a price lookup_key."""
    if tier.startswith("price_"):
        return tier
    prices = stripe.Price.list(lookup_keys=[tier], active=True, limit=1, api_key=api_key)
    data = prices["data"]
    if not data:
        raise ValueError(f"No active price for tier {tier}")
    return data[0]["id"]


def apply_subscription_change(
    row: UserSubscription,
    status: Optional[str],
    tier: Optional[str],
    api_key: str,
) -> tuple[str, Optional[Dict[str, Any]]]:
    """Perform the Stripe call implied by the requested status / tier. Returns (action, result)."""
    action = plan_subscription_change(row, status, tier)
    sub_id = row.stripe_subscription_id

    if action == ACTION_CANCEL:
        result = stripe.Subscription.cancel(sub_id, api_key=api_key)
    elif action == ACTION_RESUME:
        result = stripe.Subscription.resume(sub_id, billing_cycle_anchor="now", api_key=api_key)
    elif action == ACTION_CHANGE_TIER:
        price_id = resolve_price_id(tier, api_key)
        current = stripe.Subscription.retrieve(sub_id, api_key=api_key)
        items = current["items"]["data"]
        if not items:
            raise ValueError(f"Subscription {sub_id} has no items")
        result = stripe.Subscription.modify(
            sub_id,
            items=[{"id": items[0]["id"], "price": price_id}],
            proration_behavior="create_prorations",
            api_key=api_key,
        )
    else:
        return action, None

    logger.info("subscription_change_applied stripe_subscription_id=%s action=%s", sub_id, action)
    return action, {"id": result["id"], "status": result["status"]}
