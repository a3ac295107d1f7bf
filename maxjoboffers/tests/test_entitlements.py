"""
Entitlement evaluator tests.

can_perform is pure, so most cases build a UserAccount snapshot directly.
"""
import pytest

from maxjoboffers.core.errors import InsufficientCreditsError, InvalidAmountError, ValidationError
from maxjoboffers.features.billing.lifecycle import BillingEventType
from maxjoboffers.features.billing.provider import BillingEvent
from maxjoboffers.features.billing.service import apply_billing_event
from maxjoboffers.features.credits import ledger
from maxjoboffers.features.entitlements.service import (
    DenialReason,
    EntitlementStatus,
    MeteredFeature,
    authorize_feature,
    can_perform,
    get_feature_cost,
    has_active_subscription,
    settle_feature,
)
from maxjoboffers.models.plan import PaymentPlanId
from maxjoboffers.models.subscription import SubscriptionStatus
from maxjoboffers.models.user_account import UserAccount


def test_credits_user_allowed_with_debit():
    user = UserAccount(user_id="u1", credits=10)

    decision = can_perform(user, 3)

    assert decision.status == EntitlementStatus.ALLOWED
    assert decision.debit_required is True
    assert decision.feature_cost == 3


def test_credits_scenario_debits_once(make_user):
    make_user("user_alice", credits=10)
    user = make_user("user_alice")

    decision = can_perform(user, 3)
    assert decision.allowed
    ledger.debit("user_alice", decision.feature_cost, "job")

    assert ledger.get_balance("user_alice") == 7
    entries = ledger.get_user_ledger("user_alice")
    assert [e.delta for e in entries if e.delta < 0] == [-3]


def test_active_subscriber_allowed_without_debit():
    user = UserAccount(
        user_id="u2",
        subscription_status=SubscriptionStatus.ACTIVE,
        subscription_plan_id=PaymentPlanId.PROFESSIONAL,
        credits=0,
    )

    decision = can_perform(user, 5)

    assert decision.allowed
    assert decision.debit_required is False
    assert decision.plan_id == "professional"


def test_cancel_at_period_end_still_entitled():
    user = UserAccount(
        user_id="u3",
        subscription_status=SubscriptionStatus.CANCEL_AT_PERIOD_END,
        subscription_plan_id=PaymentPlanId.BASIC,
    )
    assert has_active_subscription(user)
    assert can_perform(user, 1).debit_required is False


@pytest.mark.parametrize("status", [SubscriptionStatus.PAST_DUE, SubscriptionStatus.DELETED, None])
def test_non_entitled_status_falls_back_to_credits(status):
    plan = PaymentPlanId.BASIC if status == SubscriptionStatus.PAST_DUE else None
    user = UserAccount(user_id="u4", subscription_status=status, subscription_plan_id=plan, credits=2)

    assert can_perform(user, 2).debit_required is True
    denied = can_perform(user, 3)
    assert denied.status == EntitlementStatus.DENIED
    assert denied.reason == DenialReason.INSUFFICIENT_CREDITS


def test_active_status_with_credit_pack_plan_is_not_a_subscription():
    user = UserAccount(
        user_id="u5",
        subscription_status=SubscriptionStatus.ACTIVE,
        subscription_plan_id=PaymentPlanId.CREDITS_10,
        credits=0,
    )
    assert has_active_subscription(user) is False
    assert can_perform(user, 1).status == EntitlementStatus.DENIED


@pytest.mark.parametrize("cost", [1, 2, 5, 100])
def test_zero_credits_no_subscription_always_denied(cost):
    user = UserAccount(user_id="u6", credits=0)
    assert can_perform(user, cost).allowed is False


@pytest.mark.parametrize("cost", [0, -1, 1.0, True])
def test_invalid_feature_cost(cost):
    with pytest.raises(InvalidAmountError):
        can_perform(UserAccount(user_id="u7", credits=10), cost)


def test_feature_costs():
    for feature in MeteredFeature:
        assert get_feature_cost(feature) == 1
    assert get_feature_cost("interview") == 1
    with pytest.raises(ValidationError):
        get_feature_cost("resume")


def test_authorize_and_settle_with_credits(make_user):
    make_user("user_alice", credits=1)

    decision = authorize_feature("user_alice", MeteredFeature.JOB)
    txn = settle_feature("user_alice", decision, MeteredFeature.JOB)

    assert txn.delta == -1
    assert txn.reason == "job"
    assert ledger.get_balance("user_alice") == 0
    assert authorize_feature("user_alice", MeteredFeature.JOB).allowed is False


def test_settle_for_subscriber_does_not_touch_ledger(make_user):
    make_user("user_bob")
    apply_billing_event(BillingEvent(
        event_id="evt_checkout",
        event_type=BillingEventType.CHECKOUT_COMPLETED,
        user_id="user_bob",
        subscription_id="sub_bob",
        plan_id="professional",
    ))

    decision = authorize_feature("user_bob", MeteredFeature.FINANCIAL)

    assert decision.allowed and not decision.debit_required
    assert settle_feature("user_bob", decision, MeteredFeature.FINANCIAL) is None
    assert ledger.get_user_ledger("user_bob") == []


def test_settle_rechecks_balance(make_user):
    make_user("user_alice", credits=1)
    decision = authorize_feature("user_alice", MeteredFeature.LINKEDIN)

    # A second request spends the credit first
    ledger.debit("user_alice", 1, "job")

    with pytest.raises(InsufficientCreditsError):
        settle_feature("user_alice", decision, MeteredFeature.LINKEDIN)
    assert ledger.get_balance("user_alice") == 0


def test_settle_denied_decision_rejected(make_user):
    make_user("user_alice")
    decision = authorize_feature("user_alice", MeteredFeature.JOB)
    with pytest.raises(ValidationError):
        settle_feature("user_alice", decision, MeteredFeature.JOB)
