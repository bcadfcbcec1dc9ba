# services/billing/events.py
"""
Stripe webhook event handlers.

Usage:
    from services.billing.events import dispatch_event

    handled = dispatch_event(db, event, stripe_api_key)

Every handler keys its reads and writes on Stripe's immutable ids, so
events may arrive in any order and more than once. Lookup misses are
logged and skipped (they happen legitimately when events race profile
creation). Write failures propagate: dispatch_event rolls back and
re-raises so the webhook answers 5xx and Stripe redelivers.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from services.billing import store
from utils.converters import from_unix, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"

PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"
PAYMENT_REQUIRES_ACTION = "requires_action"

SUBSCRIPTION_CANCELED = "canceled"

Handler = Callable[[Session, Dict[str, Any], Optional[str]], None]


# ─── Payload helpers ────────────────────────────────────────────


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_fields(subscription: Dict[str, Any]) -> Dict[str, Any]:
    """Columns copied from a Stripe subscription object onto user_subscriptions."""
    item = _first_item(subscription)
    price = item.get("price") or {}
    # period bounds moved from the subscription onto its items in newer API versions
    start = item.get("current_period_start") or subscription.get("current_period_start")
    end = item.get("current_period_end") or subscription.get("current_period_end")
    return {
        "status": subscription.get("status"),
        "current_period_start": from_unix(start),
        "current_period_end": from_unix(end),
        "subscription_tier": price.get("lookup_key") or price.get("id"),
        "price_id": price.get("id"),
    }


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        parent = lines[0].get("parent") or {}
        details = parent.get("subscription_item_details") or {}
        if details.get("subscription"):
            return details["subscription"]
    return invoice.get("subscription")


def _failure_reason(invoice: Dict[str, Any]) -> str:
    err = invoice.get("last_finalization_error") or {}
    return err.get("message") or DEFAULT_FAILURE_REASON


def _payment_values(invoice: Dict[str, Any], subscription, status: str, amount_key: str) -> Dict[str, Any]:
    return {
        "user_id": subscription.user_id,
        "subscription_id": subscription.id,
        "stripe_invoice_id": invoice["id"],
        "amount": int(invoice.get(amount_key) or 0),
        "currency": (invoice.get("currency") or "").upper(),
        "status": status,
        "billing_period_start": from_unix(invoice.get("period_start")),
        "billing_period_end": from_unix(invoice.get("period_end")),
    }


def _invoice_subscription(db: Session, invoice: Dict[str, Any]):
    stripe_sub_id = invoice_subscription_id(invoice)
    if not stripe_sub_id:
        logger.info("invoice_without_subscription invoice_id=%s", invoice.get("id"))
        return None
    subscription = store.get_subscription_by_stripe_id(db, stripe_sub_id)
    if subscription is None:
        logger.warning(
            "invoice_subscription_not_found invoice_id=%s stripe_subscription_id=%s",
            invoice.get("id"), stripe_sub_id,
        )
    return subscription


# ─── Handlers ───────────────────────────────────────────────────


def handle_checkout_completed(db: Session, session: Dict[str, Any], api_key: Optional[str]) -> None:
    customer_id = session.get("customer")
    profile = store.get_profile_by_customer_id(db, customer_id)
    if profile is None:
        logger.warning("checkout_profile_not_found customer_id=%s session_id=%s", customer_id, session.get("id"))
        return

    if session.get("mode") != "subscription" or not session.get("subscription"):
        logger.info("checkout_not_subscription session_id=%s mode=%s", session.get("id"), session.get("mode"))
        return

    # session only carries the id; period bounds and price live on the subscription
    subscription = stripe.Subscription.retrieve(session["subscription"], api_key=api_key).to_dict()
    fields = subscription_fields(subscription)

    inserted = store.insert_subscription_if_absent(db, {
        "user_id": profile.id,
        "stripe_subscription_id": subscription["id"],
        "stripe_customer_id": customer_id,
        **fields,
    })
    if inserted:
        store.project_profile(
            db,
            profile,
            stripe_subscription_id=subscription["id"],
            subscription_status=fields["status"],
            plan_id=fields["subscription_tier"],
        )
    logger.info(
        "checkout_completed customer_id=%s stripe_subscription_id=%s inserted=%s",
        customer_id, subscription["id"], inserted,
    )


def handle_subscription_created(db: Session, subscription: Dict[str, Any], api_key: Optional[str]) -> None:
    customer_id = subscription.get("customer")
    profile = store.get_profile_by_customer_id(db, customer_id)
    if profile is None:
        logger.warning("subscription_created_profile_not_found customer_id=%s", customer_id)
        return

    inserted = store.insert_subscription_if_absent(db, {
        "user_id": profile.id,
        "stripe_subscription_id": subscription["id"],
        "stripe_customer_id": customer_id,
        **subscription_fields(subscription),
    })
    logger.info("subscription_created stripe_subscription_id=%s inserted=%s", subscription["id"], inserted)


def handle_subscription_updated(db: Session, subscription: Dict[str, Any], api_key: Optional[str]) -> None:
    fields = subscription_fields(subscription)
    store.update_subscription(db, subscription["id"], {
        **fields,
        "canceled_at": from_unix(subscription.get("canceled_at")),
    })

    profile = store.get_profile_by_customer_id(db, subscription.get("customer"))
    if profile is not None:
        store.project_profile(
            db,
            profile,
            subscription_status=fields["status"],
            plan_id=fields["subscription_tier"],
        )
    logger.info("subscription_updated stripe_subscription_id=%s status=%s", subscription["id"], fields["status"])


def handle_subscription_deleted(db: Session, subscription: Dict[str, Any], api_key: Optional[str]) -> None:
    canceled_at = (
        from_unix(subscription.get("canceled_at"))
        or from_unix(subscription.get("ended_at"))
        or utcnow()
    )
    store.update_subscription(db, subscription["id"], {
        "status": SUBSCRIPTION_CANCELED,
        "canceled_at": canceled_at,
    })

    profile = store.get_profile_by_customer_id(db, subscription.get("customer"))
    if profile is not None:
        store.project_profile(db, profile, subscription_status=SUBSCRIPTION_CANCELED)
    logger.info("subscription_deleted stripe_subscription_id=%s", subscription["id"])


def handle_payment_succeeded(db: Session, invoice: Dict[str, Any], api_key: Optional[str]) -> None:
    subscription = _invoice_subscription(db, invoice)
    if subscription is None:
        return

    # an invoice already on record keeps its row, whatever its status
    inserted = store.insert_payment_if_absent(
        db, _payment_values(invoice, subscription, PAYMENT_SUCCEEDED, "amount_paid")
    )
    logger.info("payment_succeeded invoice_id=%s inserted=%s", invoice["id"], inserted)


def handle_payment_failed(db: Session, invoice: Dict[str, Any], api_key: Optional[str]) -> None:
    subscription = _invoice_subscription(db, invoice)
    if subscription is None:
        return

    values = _payment_values(invoice, subscription, PAYMENT_FAILED, "amount_due")
    values["failure_reason"] = _failure_reason(invoice)
    store.upsert_payment(db, values, update_fields=("status", "failure_reason"))
    logger.info("payment_failed invoice_id=%s", invoice["id"])


def handle_payment_action_required(db: Session, invoice: Dict[str, Any], api_key: Optional[str]) -> None:
    subscription = _invoice_subscription(db, invoice)
    if subscription is None:
        return

    store.upsert_payment(
        db,
        _payment_values(invoice, subscription, PAYMENT_REQUIRES_ACTION, "amount_due"),
        update_fields=("status",),
    )
    logger.info("payment_action_required invoice_id=%s", invoice["id"])


def handle_trial_will_end(db: Session, subscription: Dict[str, Any], api_key: Optional[str]) -> None:
    profile = store.get_profile_by_customer_id(db, subscription.get("customer"))
    if profile is None:
        logger.warning("trial_will_end_profile_not_found customer_id=%s", subscription.get("customer"))
        return
    # advisory flag only; notification delivery happens elsewhere
    store.project_profile(db, profile, trial_ending_notification_sent=True)
    logger.info("trial_will_end stripe_subscription_id=%s", subscription.get("id"))


EVENT_HANDLERS: Dict[str, Handler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
    "invoice.payment_action_required": handle_payment_action_required,
    "customer.subscription.trial_will_end": handle_trial_will_end,
}


def dispatch_event(db: Session, event: Dict[str, Any], api_key: Optional[str]) -> bool:
    """Run the handler for `event["type"]` in one transaction.

    Returns False for event types with no handler (still an acknowledged delivery).
    """
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("stripe_event_unhandled type=%s", event_type)
        return False

    obj = (event.get("data") or {}).get("object") or {}
    try:
        handler(db, obj, api_key)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("stripe_event_failed type=%s event_id=%s", event_type, event.get("id"))
        raise
    return True
