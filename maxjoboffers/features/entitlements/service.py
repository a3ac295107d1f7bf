"""
maxjoboffers/features/entitlements/service.py

Entitlement evaluation for metered features.

Handles:
- The pure decision (can_perform): subscription first, then credits
- Feature cost table for the metered features
- authorize/settle helpers that load the account and debit the ledger
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
import logging

from maxjoboffers.core.errors import InvalidAmountError, ValidationError
from maxjoboffers.features.credits import ledger
from maxjoboffers.features.plans.service import is_subscription_plan
from maxjoboffers.features.users.service import get_user_account
from maxjoboffers.models.credit_transaction import CreditTransaction
from maxjoboffers.models.subscription import SubscriptionStatus
from maxjoboffers.models.user_account import UserAccount


logger = logging.getLogger(__name__)

# CancelAtPeriodEnd keeps access until the period-end event moves it to DELETED.
ENTITLED_SUBSCRIPTION_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.CANCEL_AT_PERIOD_END,
})


class MeteredFeature(str, Enum):
    """Feature tags recorded as the ledger reason for a debit."""
    JOB = "job"  # cover letter generation
    INTERVIEW = "interview"
    LINKEDIN = "linkedin"
    FINANCIAL = "financial"


FEATURE_COSTS: Dict[MeteredFeature, int] = {
    MeteredFeature.JOB: 1,
    MeteredFeature.INTERVIEW: 1,
    MeteredFeature.LINKEDIN: 1,
    MeteredFeature.FINANCIAL: 1,
}


class EntitlementStatus(str, Enum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


class DenialReason(str, Enum):
    INSUFFICIENT_CREDITS = "insufficient_credits"


@dataclass(frozen=True)
class EntitlementDecision:
    status: EntitlementStatus
    feature_cost: int
    debit_required: bool
    reason: Optional[DenialReason] = None
    plan_id: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.status == EntitlementStatus.ALLOWED


def has_active_subscription(user: UserAccount) -> bool:
    """True when the stored status grants access and the plan is a subscription plan."""
    if user.subscription_status not in ENTITLED_SUBSCRIPTION_STATUSES:
        return False
    if user.subscription_plan_id is None:
        return False
    return is_subscription_plan(user.subscription_plan_id)


def can_perform(user: UserAccount, feature_cost: int) -> EntitlementDecision:
    """
    Decide whether user may perform a metered action costing feature_cost credits.

    Pure: no ledger mutation. The result is advisory; the ledger re-checks
    the balance when the debit happens.
    """
    if isinstance(feature_cost, bool) or not isinstance(feature_cost, int) or feature_cost <= 0:
        raise InvalidAmountError(f"Feature cost must be a positive integer, got {feature_cost!r}")

    plan_id = user.subscription_plan_id.value if user.subscription_plan_id else None

    if has_active_subscription(user):
        return EntitlementDecision(
            status=EntitlementStatus.ALLOWED,
            feature_cost=feature_cost,
            debit_required=False,
            plan_id=plan_id,
        )

    if user.credits >= feature_cost:
        return EntitlementDecision(
            status=EntitlementStatus.ALLOWED,
            feature_cost=feature_cost,
            debit_required=True,
            plan_id=plan_id,
        )

    logger.info(
        "[entitlement] DENIED",
        extra={
            "user_id": user.user_id,
            "feature_cost": feature_cost,
            "credits": user.credits,
            "subscription_status": user.subscription_status.value if user.subscription_status else None,
        },
    )
    return EntitlementDecision(
        status=EntitlementStatus.DENIED,
        feature_cost=feature_cost,
        debit_required=False,
        reason=DenialReason.INSUFFICIENT_CREDITS,
        plan_id=plan_id,
    )


def get_feature_cost(feature: MeteredFeature) -> int:
    try:
        return FEATURE_COSTS[MeteredFeature(feature)]
    except ValueError:
        raise ValidationError(f"Unknown metered feature: {feature}")


def authorize_feature(user_id: str, feature: MeteredFeature) -> EntitlementDecision:
    """Load the account and evaluate it against the feature's cost."""
    user = get_user_account(user_id)
    return can_perform(user, get_feature_cost(feature))


def settle_feature(
    user_id: str,
    decision: EntitlementDecision,
    feature: MeteredFeature,
) -> Optional[CreditTransaction]:
    """
    Debit the cost of a completed feature use.

    Returns None when the subscription absorbed the cost.

    Raises:
        ValidationError: decision was a denial
        InsufficientCreditsError: balance dropped since the decision was made
    """
    if not decision.allowed:
        raise ValidationError("Cannot settle a denied entitlement decision")
    if not decision.debit_required:
        return None
    return ledger.debit(user_id, decision.feature_cost, MeteredFeature(feature).value)
