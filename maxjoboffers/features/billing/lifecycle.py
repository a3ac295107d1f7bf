"""
Subscription lifecycle state machine.

States: None -> ACTIVE -> {PAST_DUE, CANCEL_AT_PERIOD_END} -> DELETED.
PAST_DUE and CANCEL_AT_PERIOD_END can return to ACTIVE; DELETED is terminal.
A processor deletion (SUBSCRIPTION_DELETED) ends any live subscription.
Only billing events move a subscription between states.
"""
from enum import Enum
from typing import Dict, Optional, Tuple

from maxjoboffers.core.errors import InvalidTransitionError
from maxjoboffers.models.subscription import SubscriptionStatus


class BillingEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    CANCEL_REQUESTED = "cancel_requested"
    REACTIVATION_REQUESTED = "reactivation_requested"
    PERIOD_ENDED = "period_ended"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    PLAN_CHANGED = "plan_changed"


Status = Optional[SubscriptionStatus]

TRANSITIONS: Dict[Tuple[BillingEventType, Status], SubscriptionStatus] = {
    (BillingEventType.CHECKOUT_COMPLETED, None): SubscriptionStatus.ACTIVE,
    (BillingEventType.CHECKOUT_COMPLETED, SubscriptionStatus.DELETED): SubscriptionStatus.ACTIVE,
    (BillingEventType.PAYMENT_FAILED, SubscriptionStatus.ACTIVE): SubscriptionStatus.PAST_DUE,
    (BillingEventType.PAYMENT_SUCCEEDED, SubscriptionStatus.PAST_DUE): SubscriptionStatus.ACTIVE,
    (BillingEventType.CANCEL_REQUESTED, SubscriptionStatus.ACTIVE): SubscriptionStatus.CANCEL_AT_PERIOD_END,
    (BillingEventType.REACTIVATION_REQUESTED, SubscriptionStatus.CANCEL_AT_PERIOD_END): SubscriptionStatus.ACTIVE,
    (BillingEventType.PERIOD_ENDED, SubscriptionStatus.CANCEL_AT_PERIOD_END): SubscriptionStatus.DELETED,
    # Renewal: the period rolls over, status is unchanged.
    (BillingEventType.PERIOD_ENDED, SubscriptionStatus.ACTIVE): SubscriptionStatus.ACTIVE,
    # Processor-side deletion ends the subscription from any live state.
    (BillingEventType.SUBSCRIPTION_DELETED, SubscriptionStatus.ACTIVE): SubscriptionStatus.DELETED,
    (BillingEventType.SUBSCRIPTION_DELETED, SubscriptionStatus.PAST_DUE): SubscriptionStatus.DELETED,
    (BillingEventType.SUBSCRIPTION_DELETED, SubscriptionStatus.CANCEL_AT_PERIOD_END): SubscriptionStatus.DELETED,
    (BillingEventType.PLAN_CHANGED, SubscriptionStatus.ACTIVE): SubscriptionStatus.ACTIVE,
}

# Events that may legitimately repeat against the state they produced
# (processors resend dunning and cancellation notices under fresh event ids).
_REPEATABLE = {
    BillingEventType.PAYMENT_FAILED,
    BillingEventType.PAYMENT_SUCCEEDED,
    BillingEventType.CANCEL_REQUESTED,
    BillingEventType.REACTIVATION_REQUESTED,
}


def next_status(current: Status, event_type: BillingEventType) -> SubscriptionStatus:
    """
    Return the status an event moves a subscription to.

    Raises:
        InvalidTransitionError: event is not valid from the current status
    """
    event_type = BillingEventType(event_type)
    if current == SubscriptionStatus.DELETED and event_type != BillingEventType.CHECKOUT_COMPLETED:
        raise InvalidTransitionError(f"Subscription is deleted; cannot apply {event_type.value}")

    target = TRANSITIONS.get((event_type, current))
    if target is not None:
        return target

    if event_type in _REPEATABLE and current is not None:
        for (evt, _), produced in TRANSITIONS.items():
            if evt == event_type and produced == current:
                return current

    current_label = current.value if current else "none"
    raise InvalidTransitionError(f"Cannot apply {event_type.value} to subscription in state {current_label}")


def is_terminal(status: Status) -> bool:
    return status == SubscriptionStatus.DELETED
