"""
Proration for mid-period subscription plan changes.

Prices come from the plan catalog (PlanDefinition.price_cents), so there is
one price source for checkout display and proration.
"""

from maxjoboffers.core.errors import ValidationError
from maxjoboffers.features.plans.service import PlanRef, is_subscription_plan, lookup

BILLING_PERIOD_DAYS = 30


def _round_half_up(numerator: int, denominator: int) -> int:
    # floor(n/d + 1/2) in integer arithmetic; matches Math.round for negatives too
    return (2 * numerator + denominator) // (2 * denominator)


def prorate(current_plan_id: PlanRef, new_plan_id: PlanRef, days_remaining: int) -> int:
    """
    Signed proration in cents for switching plans with days_remaining left.

    Positive means an additional charge, negative a refund. Credit packs are
    not periodic, so any switch involving one prorates to 0.

    days_remaining counts whole days; fractional days are rejected rather
    than rounded so the cents result stays exact.

    Raises:
        UnknownPlanError: either plan id is unknown
        ValidationError: days_remaining is negative or not an integer
    """
    current = lookup(current_plan_id)
    new = lookup(new_plan_id)

    if isinstance(days_remaining, bool) or not isinstance(days_remaining, int) or days_remaining < 0:
        raise ValidationError(f"days_remaining must be a non-negative integer, got {days_remaining!r}")

    if not (is_subscription_plan(current.plan_id) and is_subscription_plan(new.plan_id)):
        return 0

    refund_x30 = current.price_cents * days_remaining
    charge_x30 = new.price_cents * days_remaining
    return _round_half_up(charge_x30 - refund_x30, BILLING_PERIOD_DAYS)
