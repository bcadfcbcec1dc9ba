# services/billing/store.py
"""
Read/write access to profiles, user_subscriptions and payments for the
Stripe webhook handlers.

Inserts keyed on Stripe ids are single INSERT .. ON CONFLICT statements
backed by the unique constraints on stripe_subscription_id and
stripe_invoice_id, so redelivered events cannot create duplicate rows.
Nothing here commits; the caller owns the transaction.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from models.payment import Payment
from models.profile import Profile
from models.user_subscription import UserSubscription
from utils.converters import utcnow

logger = logging.getLogger(__name__)


def _insert(db: Session, model):
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


# ─── Lookups ────────────────────────────────────────────────────


def get_profile_by_customer_id(db: Session, customer_id: Optional[str]) -> Optional[Profile]:
    if not customer_id:
        return None
    return db.query(Profile).filter(Profile.stripe_customer_id == customer_id).first()


def get_subscription_by_stripe_id(db: Session, stripe_subscription_id: Optional[str]) -> Optional[UserSubscription]:
    if not stripe_subscription_id:
        return None
    return (
        db.query(UserSubscription)
        .filter(UserSubscription.stripe_subscription_id == stripe_subscription_id)
        .first()
    )


# ─── Subscriptions ──────────────────────────────────────────────


def insert_subscription_if_absent(db: Session, values: dict[str, Any]) -> bool:
    """Insert a user_subscriptions row unless one exists for its stripe_subscription_id.

    Returns True when a row was inserted.
    """
    now = utcnow()
    row = {"created_at": now, "updated_at": now, **values}
    stmt = _insert(db, UserSubscription).values(**row).on_conflict_do_nothing(
        index_elements=["stripe_subscription_id"]
    )
    result = db.execute(stmt)
    inserted = result.rowcount == 1
    if not inserted:
        logger.info("subscription_exists stripe_subscription_id=%s", values["stripe_subscription_id"])
    return inserted


def update_subscription(db: Session, stripe_subscription_id: str, values: dict[str, Any]) -> int:
    """UPDATE by stripe_subscription_id. Matching zero rows is not an error; returns rowcount."""
    stmt = (
        update(UserSubscription)
        .where(UserSubscription.stripe_subscription_id == stripe_subscription_id)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    count = db.execute(stmt).rowcount
    if count == 0:
        logger.info("subscription_update_no_match stripe_subscription_id=%s", stripe_subscription_id)
    return count


# ─── Payments ───────────────────────────────────────────────────


def insert_payment_if_absent(db: Session, values: dict[str, Any]) -> bool:
    now = utcnow()
    row = {"created_at": now, "updated_at": now, **values}
    stmt = _insert(db, Payment).values(**row).on_conflict_do_nothing(
        index_elements=["stripe_invoice_id"]
    )
    return db.execute(stmt).rowcount == 1


def upsert_payment(db: Session, values: dict[str, Any], update_fields: tuple[str, ...]) -> None:
    """Insert a payments row, or on an existing stripe_invoice_id overwrite `update_fields`."""
    now = utcnow()
    row = {"created_at": now, "updated_at": now, **values}
    stmt = _insert(db, Payment).values(**row)
    set_ = {name: getattr(stmt.excluded, name) for name in update_fields}
    set_["updated_at"] = stmt.excluded.updated_at
    db.execute(stmt.on_conflict_do_update(index_elements=["stripe_invoice_id"], set_=set_))


# ─── Profile projection ─────────────────────────────────────────


def project_profile(db: Session, profile: Profile, **fields: Any) -> None:
    """Mirror subscription fields onto the profile row (same transaction as the subscription write)."""
    for name, value in fields.items():
        setattr(profile, name, value)
    profile.updated_at = utcnow()
    db.add(profile)
    db.flush()
