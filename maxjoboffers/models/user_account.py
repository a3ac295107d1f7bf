from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from maxjoboffers.models.plan import PaymentPlanId
from maxjoboffers.models.subscription import SubscriptionStatus


class UserAccount(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_plan_id: Optional[PaymentPlanId] = None
    credits: int = Field(default=0, ge=0)
