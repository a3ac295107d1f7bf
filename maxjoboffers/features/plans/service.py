"""
maxjoboffers/features/plans/service.py

Plan catalog.

Handles:
- The fixed registry of payment plans (3 subscriptions, 3 credit packs)
- Effect queries (subscription vs credits)
- Resolution of billing-processor price ids from configuration
"""

from types import MappingProxyType
from typing import List, Mapping, Optional, Union

from maxjoboffers.core.config import load_settings
from maxjoboffers.core.errors import UnknownPlanError
from maxjoboffers.models.plan import (
    CreditsEffect,
    PaymentPlanId,
    PlanDefinition,
    SubscriptionEffect,
)


PlanRef = Union[PaymentPlanId, str]


PAYMENT_PLANS: Mapping[PaymentPlanId, PlanDefinition] = MappingProxyType({
    PaymentPlanId.BASIC: PlanDefinition(
        plan_id=PaymentPlanId.BASIC,
        name="Basic",
        processor_setting="PAYMENTS_BASIC_SUBSCRIPTION_PLAN_ID",
        price_cents=999,
        effect=SubscriptionEffect(),
    ),
    PaymentPlanId.PROFESSIONAL: PlanDefinition(
        plan_id=PaymentPlanId.PROFESSIONAL,
        name="Professional",
        processor_setting="PAYMENTS_PROFESSIONAL_SUBSCRIPTION_PLAN_ID",
        price_cents=1999,
        effect=SubscriptionEffect(),
    ),
    PaymentPlanId.ENTERPRISE: PlanDefinition(
        plan_id=PaymentPlanId.ENTERPRISE,
        name="Enterprise",
        processor_setting="PAYMENTS_ENTERPRISE_SUBSCRIPTION_PLAN_ID",
        price_cents=4999,
        effect=SubscriptionEffect(),
    ),
    PaymentPlanId.CREDITS_10: PlanDefinition(
        plan_id=PaymentPlanId.CREDITS_10,
        name="10 Credits",
        processor_setting="PAYMENTS_CREDITS_10_PLAN_ID",
        price_cents=499,
        effect=CreditsEffect(amount=10),
    ),
    PaymentPlanId.CREDITS_50: PlanDefinition(
        plan_id=PaymentPlanId.CREDITS_50,
        name="50 Credits",
        processor_setting="PAYMENTS_CREDITS_50_PLAN_ID",
        price_cents=1999,
        effect=CreditsEffect(amount=50),
    ),
    PaymentPlanId.CREDITS_100: PlanDefinition(
        plan_id=PaymentPlanId.CREDITS_100,
        name="100 Credits",
        processor_setting="PAYMENTS_CREDITS_100_PLAN_ID",
        price_cents=3499,
        effect=CreditsEffect(amount=100),
    ),
})


def parse_plan_id(plan_id: PlanRef) -> PaymentPlanId:
    """
    Parse a raw plan id into the enumeration.

    Raises:
        UnknownPlanError: If the value is not a known plan id
    """
    if isinstance(plan_id, PaymentPlanId):
        return plan_id
    try:
        return PaymentPlanId(plan_id)
    except ValueError:
        raise UnknownPlanError(f"Invalid PaymentPlanId: {plan_id}")


def lookup(plan_id: PlanRef) -> PlanDefinition:
    """Return the definition for plan_id or raise UnknownPlanError."""
    return PAYMENT_PLANS[parse_plan_id(plan_id)]


def is_subscription_plan(plan_id: PlanRef) -> bool:
    return isinstance(lookup(plan_id).effect, SubscriptionEffect)


def is_credits_plan(plan_id: PlanRef) -> bool:
    return isinstance(lookup(plan_id).effect, CreditsEffect)


def credits_granted(plan_id: PlanRef) -> int:
    """Credits granted by a credit pack; 0 for subscription plans."""
    effect = lookup(plan_id).effect
    if isinstance(effect, CreditsEffect):
        return effect.amount
    return 0


def pretty_plan_name(plan_id: PlanRef) -> str:
    return lookup(plan_id).name


def subscription_plan_ids() -> List[PaymentPlanId]:
    return [pid for pid in PAYMENT_PLANS if is_subscription_plan(pid)]


def credits_plan_ids() -> List[PaymentPlanId]:
    return [pid for pid in PAYMENT_PLANS if is_credits_plan(pid)]


def processor_plan_reference(plan_id: PlanRef) -> str:
    """
    Billing-processor price id for a plan, read from configuration now.

    Returns "" when the operator has not configured the mapping; callers
    treat that as "checkout unavailable", not as a data error.
    """
    plan = lookup(plan_id)
    cfg = load_settings()
    return getattr(cfg, plan.processor_setting, None) or ""


def plan_for_processor_reference(reference: Optional[str]) -> Optional[PaymentPlanId]:
    """Map a processor price id back to the internal plan id (None if unmapped)."""
    if not reference:
        return None
    cfg = load_settings()
    for plan_id, plan in PAYMENT_PLANS.items():
        if getattr(cfg, plan.processor_setting, None) == reference:
            return plan_id
    return None
