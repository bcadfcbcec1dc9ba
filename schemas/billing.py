from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CheckoutIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(alias="priceId")
    plan_id: Optional[str] = Field(default=None, alias="planId")

    @field_validator("price_id")
    @classmethod
    def validate_price_id(cls, value: str) -> str:
        price = (value or "").strip()
        if not price:
            raise ValueError("priceId is required")
        return price


class CheckoutOut(BaseModel):
    url: str


class SubscriptionUpdateIn(BaseModel):
    subscription_id: str
    tier: Optional[str] = None
    status: Optional[str] = None

    @field_validator("subscription_id")
    @classmethod
    def validate_subscription_id(cls, value: str) -> str:
        sub_id = (value or "").strip()
        if not sub_id:
            raise ValueError("Subscription ID is required")
        return sub_id


class SubscriptionUpdateOut(BaseModel):
    success: bool
    message: str
    subscription_id: str
    tier: Optional[str] = None
    status: Optional[str] = None
    action: str
    stripe_result: Optional[dict[str, Any]] = None
