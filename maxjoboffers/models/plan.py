"""
maxjoboffers/models/plan.py

Payment plan models.

A plan is either a recurring subscription (unlimited metered use while
active) or a one-time credit pack. The effect is a tagged union keyed on
``kind`` so every consumer has to handle both variants.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class PaymentPlanId(str, Enum):
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
    CREDITS_10 = "credits10"
    CREDITS_50 = "credits50"
    CREDITS_100 = "credits100"


class SubscriptionEffect(BaseModel):
    """Unlimited metered use while the subscription is active."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["subscription"] = "subscription"


class CreditsEffect(BaseModel):
    """One-time grant of ``amount`` credits."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["credits"] = "credits"
    amount: int = Field(gt=0)


PlanEffect = Annotated[Union[SubscriptionEffect, CreditsEffect], Field(discriminator="kind")]


class PlanDefinition(BaseModel):
    """
    PlanDefinition is the static description of a purchasable plan.

    ``processor_setting`` names the configuration key holding the billing
    processor's price id; the value itself is resolved at lookup time.
    ``price_cents`` is the monthly price for subscriptions and the one-time
    price for credit packs.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: PaymentPlanId
    name: str
    processor_setting: str
    price_cents: int = Field(ge=0)
    effect: PlanEffect
