from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("user_subscriptions.id", ondelete="CASCADE"), index=True, nullable=False
    )

    stripe_invoice_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # minor currency units
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)  # succeeded | failed | requires_action
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    billing_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    billing_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    subscription = relationship("UserSubscription", back_populates="payments")
