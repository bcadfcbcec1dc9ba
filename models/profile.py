from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func, false as sa_false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Profile(Base):
    __tablename__ = "profiles"

    # Supabase auth.users.id (UUID string)
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(32), default="user", server_default="user", nullable=False)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # denormalized from user_subscriptions for cheap reads; not authoritative
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    plan_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    trial_ending_notification_sent: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=sa_false(), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    subscriptions = relationship("UserSubscription", back_populates="profile")
