"""
maxjoboffers/models/subscription.py

Subscription record mirrored from the billing processor.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from maxjoboffers.models.plan import PaymentPlanId


class SubscriptionStatus(str, Enum):
    """Subscription states. ``None`` (never subscribed) is modelled as a missing value."""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCEL_AT_PERIOD_END = "cancel_at_period_end"
    DELETED = "deleted"


class SubscriptionRecord(BaseModel):
    """
    SubscriptionRecord mirrors the processor's subscription object.

    Constraint: never hard-deleted; DELETED is terminal.
    """
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    user_id: str
    plan_id: PaymentPlanId
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
