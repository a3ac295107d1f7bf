"""
Plan change and cancellation request tests.

The billing provider is mocked; local state only moves on processor events.
"""
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import update

from maxjoboffers.core.database import get_db_session, subscriptions
from maxjoboffers.core.errors import (
    CheckoutUnavailableError,
    InvalidTransitionError,
    SubscriptionStateConflictError,
    UserNotFoundError,
    ValidationError,
)
from maxjoboffers.features.billing.lifecycle import BillingEventType
from maxjoboffers.features.billing.provider import BillingEvent, BillingProviderError
from maxjoboffers.features.billing.service import (
    apply_billing_event,
    cancel_subscription,
    change_plan,
    get_subscription,
    reactivate_subscription,
)
from maxjoboffers.features.users.service import get_user_account
from maxjoboffers.models.plan import PaymentPlanId
from maxjoboffers.models.subscription import SubscriptionStatus


@pytest.fixture(autouse=True)
def billing_disabled(monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)


@pytest.fixture
def provider():
    mock = Mock()
    with patch("maxjoboffers.features.billing.service.get_provider", return_value=mock):
        yield mock


@pytest.fixture
def subscriber(make_user):
    make_user("user_alice")
    apply_billing_event(BillingEvent(
        event_id="evt_checkout",
        event_type=BillingEventType.CHECKOUT_COMPLETED,
        user_id="user_alice",
        subscription_id="sub_1",
        plan_id="basic",
    ))
    return "user_alice"


def test_upgrade_updates_record_and_mirror(subscriber):
    change = change_plan(subscriber, "professional", days_remaining=15)

    assert change.previous_plan_id == PaymentPlanId.BASIC
    assert change.plan_id == PaymentPlanId.PROFESSIONAL
    assert change.proration_cents == 500
    assert change.subscription_id == "sub_1"

    record = get_subscription(subscriber)
    assert record.plan_id == PaymentPlanId.PROFESSIONAL
    assert record.status == SubscriptionStatus.ACTIVE
    user = get_user_account(subscriber)
    assert user.subscription_plan_id == PaymentPlanId.PROFESSIONAL
    assert user.subscription_status == SubscriptionStatus.ACTIVE


def test_change_without_days_skips_proration(subscriber):
    change = change_plan(subscriber, PaymentPlanId.ENTERPRISE)
    assert change.proration_cents is None


def test_credit_pack_is_not_a_plan_change(subscriber):
    with pytest.raises(ValidationError):
        change_plan(subscriber, "credits10", days_remaining=5)
    assert get_subscription(subscriber).plan_id == PaymentPlanId.BASIC


def test_requires_active_subscription(make_user, subscriber):
    make_user("user_bob")
    with pytest.raises(InvalidTransitionError):
        change_plan("user_bob", "professional")

    apply_billing_event(BillingEvent(
        event_id="evt_fail",
        event_type=BillingEventType.PAYMENT_FAILED,
        user_id=subscriber,
        subscription_id="sub_1",
    ))
    with pytest.raises(InvalidTransitionError):
        change_plan(subscriber, "professional")


def test_unknown_user():
    with pytest.raises(UserNotFoundError):
        change_plan("ghost", "professional")


def test_mirror_conflict_blocks_change(subscriber):
    with get_db_session() as session:
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == "sub_1")
            .values(plan_id="enterprise")
        )

    with pytest.raises(SubscriptionStateConflictError):
        change_plan(subscriber, "professional")
    assert get_user_account(subscriber).subscription_plan_id == PaymentPlanId.BASIC


def test_processor_plan_changed_event(subscriber):
    result = apply_billing_event(BillingEvent(
        event_id="evt_plan",
        event_type=BillingEventType.PLAN_CHANGED,
        user_id=subscriber,
        subscription_id="sub_1",
        plan_id="enterprise",
    ))

    assert result.changed is True
    assert result.status == SubscriptionStatus.ACTIVE
    assert get_user_account(subscriber).subscription_plan_id == PaymentPlanId.ENTERPRISE


def test_change_switches_processor_price_first(subscriber, provider, price_ids):
    change_plan(subscriber, "professional")

    provider.update_subscription_price.assert_called_once_with("sub_1", "price_pro")
    assert get_subscription(subscriber).plan_id == PaymentPlanId.PROFESSIONAL


def test_processor_failure_leaves_plan_unchanged(subscriber, provider, price_ids):
    provider.update_subscription_price.side_effect = BillingProviderError("declined")

    with pytest.raises(BillingProviderError):
        change_plan(subscriber, "enterprise")

    assert get_subscription(subscriber).plan_id == PaymentPlanId.BASIC
    assert get_user_account(subscriber).subscription_plan_id == PaymentPlanId.BASIC


def test_change_to_unpriced_plan_unavailable(subscriber, provider, monkeypatch):
    monkeypatch.setenv("PAYMENTS_PROFESSIONAL_SUBSCRIPTION_PLAN_ID", "")

    with pytest.raises(CheckoutUnavailableError):
        change_plan(subscriber, "professional")
    provider.update_subscription_price.assert_not_called()


def test_same_plan_skips_processor(subscriber, provider, price_ids):
    change_plan(subscriber, "basic")
    provider.update_subscription_price.assert_not_called()


def test_cancel_asks_processor_and_waits_for_event(subscriber, provider):
    record = cancel_subscription(subscriber)

    provider.cancel_subscription.assert_called_once_with("sub_1")
    assert record.subscription_id == "sub_1"
    assert get_subscription(subscriber).status == SubscriptionStatus.ACTIVE

    apply_billing_event(BillingEvent(
        event_id="evt_cancel",
        event_type=BillingEventType.CANCEL_REQUESTED,
        user_id=subscriber,
        subscription_id="sub_1",
    ))
    reactivate_subscription(subscriber)
    provider.reactivate_subscription.assert_called_once_with("sub_1")


def test_cancel_and_reactivate_require_matching_status(subscriber, provider):
    with pytest.raises(InvalidTransitionError):
        reactivate_subscription(subscriber)

    apply_billing_event(BillingEvent(
        event_id="evt_cancel",
        event_type=BillingEventType.CANCEL_REQUESTED,
        user_id=subscriber,
        subscription_id="sub_1",
    ))
    with pytest.raises(InvalidTransitionError):
        cancel_subscription(subscriber)
    provider.cancel_subscription.assert_not_called()
    provider.reactivate_subscription.assert_not_called()


def test_cancel_without_subscription(make_user, provider):
    make_user("user_bob")
    with pytest.raises(InvalidTransitionError):
        cancel_subscription("user_bob")


def test_cancel_requires_billing(subscriber):
    with pytest.raises(BillingProviderError):
        cancel_subscription(subscriber)
