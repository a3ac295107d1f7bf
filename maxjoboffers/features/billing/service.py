"""
Billing service orchestrator.

Business logic that coordinates:
- Checkout for subscription plans and credit packs
- Webhook processing (idempotent by event id)
- Subscription lifecycle transitions, applied to the subscription record and
  the user account mirror in one transaction
- Plan changes with proration, cancellation and reactivation requests

All Stripe-specific code is in stripe_provider.py.
"""
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from maxjoboffers.core.database import (
    get_db_session,
    billing_events,
    subscriptions,
    user_accounts,
)
from maxjoboffers.core.errors import (
    CheckoutUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    SubscriptionStateConflictError,
    ValidationError,
)
from maxjoboffers.core.logging import log_event
from maxjoboffers.features.billing.lifecycle import BillingEventType, is_terminal, next_status
from maxjoboffers.features.billing.proration import prorate
from maxjoboffers.features.billing.provider import (
    BillingEvent,
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
)
from maxjoboffers.features.billing.stripe_provider import StripeProvider
from maxjoboffers.features.credits import ledger
from maxjoboffers.features.plans.service import (
    PlanRef,
    credits_granted,
    is_credits_plan,
    is_subscription_plan,
    lookup,
    parse_plan_id,
    processor_plan_reference,
)
from maxjoboffers.features.users.service import get_user_account, load_account_row
from maxjoboffers.models.credit_transaction import CreditTransaction
from maxjoboffers.models.plan import PaymentPlanId
from maxjoboffers.models.subscription import SubscriptionRecord, SubscriptionStatus


@dataclass(frozen=True)
class SubscriptionTransition:
    """Outcome of one billing event; the surrounding system persists/notifies from it."""
    event_id: str
    event_type: BillingEventType
    user_id: str
    subscription_id: Optional[str]
    previous_status: Optional[SubscriptionStatus]
    status: Optional[SubscriptionStatus]
    plan_id: Optional[str]
    changed: bool
    duplicate: bool = False
    credit_transaction: Optional[CreditTransaction] = None


@dataclass(frozen=True)
class PlanChange:
    subscription_id: str
    user_id: str
    previous_plan_id: PaymentPlanId
    plan_id: PaymentPlanId
    proration_cents: Optional[int]


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(os.getenv("STRIPE_SECRET_KEY"))


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status(value: Optional[str]) -> Optional[SubscriptionStatus]:
    return SubscriptionStatus(value) if value else None


def record_from_row(row) -> SubscriptionRecord:
    return SubscriptionRecord(
        subscription_id=row.subscription_id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        status=row.status,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at_period_end=bool(row.cancel_at_period_end),
    )


def _latest_subscription_row(session: Session, user_id: str):
    return session.execute(
        select(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .order_by(subscriptions.c.id.desc())
        .limit(1)
    ).first()


def get_subscription(user_id: str) -> Optional[SubscriptionRecord]:
    """Most recent subscription record for the user, if any."""
    with get_db_session() as session:
        row = _latest_subscription_row(session, user_id)
        return record_from_row(row) if row else None


def mirror_mismatch(record_row, user_row) -> bool:
    """True when the user account does not mirror the subscription record."""
    expected_plan = None if record_row.status == SubscriptionStatus.DELETED.value else record_row.plan_id
    return (
        user_row.subscription_status != record_row.status
        or user_row.subscription_plan_id != expected_plan
    )


def _raise_conflict(user_id: str, subscription_id: Optional[str], message: str, **details) -> None:
    log_event(
        "error",
        "billing.subscription_state_conflict",
        user_id=user_id,
        error_code=SubscriptionStateConflictError.code,
        extra={"subscription_id": subscription_id, "detail": message, **details},
    )
    raise SubscriptionStateConflictError(message)


def _check_mirror(record_row, user_row) -> None:
    if mirror_mismatch(record_row, user_row):
        _raise_conflict(
            user_row.user_id,
            record_row.subscription_id,
            f"Subscription {record_row.subscription_id} and user {user_row.user_id} disagree",
            record_status=record_row.status,
            record_plan_id=record_row.plan_id,
            user_status=user_row.subscription_status,
            user_plan_id=user_row.subscription_plan_id,
        )


def _subscription_plan(plan_id: Optional[PlanRef], event_type: BillingEventType) -> PaymentPlanId:
    if not plan_id:
        raise ValidationError(f"{event_type.value} requires a plan_id")
    parsed = parse_plan_id(plan_id)
    if not is_subscription_plan(parsed):
        raise ValidationError(f"{parsed.value} is not a subscription plan")
    return parsed


def _sync_user_mirror(session: Session, user_id: str, status: SubscriptionStatus, plan_id: str) -> None:
    session.execute(
        update(user_accounts)
        .where(user_accounts.c.user_id == user_id)
        .values(
            subscription_status=status.value,
            subscription_plan_id=None if is_terminal(status) else plan_id,
            updated_at=_utcnow(),
        )
    )


def _apply_transition(session: Session, event: BillingEvent, event_type: BillingEventType) -> SubscriptionTransition:
    user_row = load_account_row(session, event.user_id)
    if not event.subscription_id:
        raise ValidationError(f"{event_type.value} requires a subscription_id")

    record_row = session.execute(
        select(subscriptions).where(subscriptions.c.subscription_id == event.subscription_id)
    ).first()

    if record_row is not None:
        if record_row.user_id != event.user_id:
            _raise_conflict(
                event.user_id,
                event.subscription_id,
                f"Subscription {event.subscription_id} belongs to {record_row.user_id}, not {event.user_id}",
            )
        current = _status(record_row.status)
        if is_terminal(current):
            raise InvalidTransitionError(f"Subscription {event.subscription_id} is deleted")
        _check_mirror(record_row, user_row)
    else:
        if event_type != BillingEventType.CHECKOUT_COMPLETED:
            raise NotFoundError(f"Subscription not found: {event.subscription_id}")
        current = _status(user_row.subscription_status)
        if current is not None and not is_terminal(current):
            raise InvalidTransitionError(
                f"User {event.user_id} already has a {current.value} subscription"
            )

    target = next_status(current, event_type)

    if event_type in (BillingEventType.CHECKOUT_COMPLETED, BillingEventType.PLAN_CHANGED):
        plan_id = _subscription_plan(event.plan_id, event_type).value
    else:
        plan_id = record_row.plan_id

    if event_type == BillingEventType.CANCEL_REQUESTED:
        cancel_at_period_end = True
    elif event_type in (BillingEventType.CHECKOUT_COMPLETED, BillingEventType.REACTIVATION_REQUESTED):
        cancel_at_period_end = False
    else:
        cancel_at_period_end = bool(record_row.cancel_at_period_end)

    now = _utcnow()
    if record_row is None:
        session.execute(
            insert(subscriptions).values(
                subscription_id=event.subscription_id,
                user_id=event.user_id,
                plan_id=plan_id,
                status=target.value,
                current_period_start=event.current_period_start,
                current_period_end=event.current_period_end,
                cancel_at_period_end=cancel_at_period_end,
                created_at=now,
                updated_at=now,
            )
        )
        previous_plan = None
    else:
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == event.subscription_id)
            .values(
                plan_id=plan_id,
                status=target.value,
                current_period_start=event.current_period_start or record_row.current_period_start,
                current_period_end=event.current_period_end or record_row.current_period_end,
                cancel_at_period_end=cancel_at_period_end,
                updated_at=now,
            )
        )
        previous_plan = record_row.plan_id

    _sync_user_mirror(session, event.user_id, target, plan_id)

    return SubscriptionTransition(
        event_id=event.event_id,
        event_type=event_type,
        user_id=event.user_id,
        subscription_id=event.subscription_id,
        previous_status=current,
        status=target,
        plan_id=plan_id,
        changed=(target != current or plan_id != previous_plan),
    )


def _apply_credit_purchase(session: Session, event: BillingEvent) -> SubscriptionTransition:
    plan_id = parse_plan_id(event.plan_id)
    user_row = load_account_row(session, event.user_id)
    txn = ledger.grant(event.user_id, credits_granted(plan_id), ledger.PURCHASE_REASON, session=session)
    status = _status(user_row.subscription_status)
    return SubscriptionTransition(
        event_id=event.event_id,
        event_type=BillingEventType.CHECKOUT_COMPLETED,
        user_id=event.user_id,
        subscription_id=event.subscription_id,
        previous_status=status,
        status=status,
        plan_id=plan_id.value,
        changed=False,
        credit_transaction=txn,
    )


def _event_processed(event_id: str) -> bool:
    with get_db_session() as session:
        row = session.execute(
            select(billing_events.c.processed).where(billing_events.c.event_id == event_id)
        ).fetchone()
        return bool(row and row[0])


def _duplicate(event: BillingEvent, event_type: BillingEventType) -> SubscriptionTransition:
    log_event(
        "info",
        "billing.event_duplicate",
        user_id=event.user_id,
        event_type=event_type.value,
        extra={"event_id": event.event_id},
    )
    return SubscriptionTransition(
        event_id=event.event_id,
        event_type=event_type,
        user_id=event.user_id,
        subscription_id=event.subscription_id,
        previous_status=None,
        status=None,
        plan_id=event.plan_id,
        changed=False,
        duplicate=True,
    )


def _record_failure(event: BillingEvent, event_type: BillingEventType, error: Exception) -> None:
    level = "error" if isinstance(error, SubscriptionStateConflictError) else "warning"
    log_event(
        level,
        "billing.event_failed",
        user_id=event.user_id,
        event_type=event_type.value,
        error_code=getattr(error, "code", type(error).__name__),
        extra={"event_id": event.event_id, "error": error},
    )
    message = str(error)[:500]
    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.id).where(billing_events.c.event_id == event.event_id)
        ).fetchone()
        if existing:
            session.execute(
                update(billing_events)
                .where(billing_events.c.event_id == event.event_id)
                .values(error=message)
            )
        else:
            session.execute(
                insert(billing_events).values(
                    event_id=event.event_id,
                    event_type=event_type.value,
                    user_id=event.user_id,
                    subscription_id=event.subscription_id,
                    received_at=_utcnow(),
                    processed=False,
                    error=message,
                )
            )


def apply_billing_event(event: BillingEvent) -> SubscriptionTransition:
    """
    Apply a billing-processor event (idempotent by event_id).

    1. Skip if the event id was already processed
    2. Record the event
    3. Credit-pack checkout: grant credits; otherwise: transition the subscription
    4. Mark as processed (same transaction as the state change)

    A failed event is recorded with its error and may be delivered again.

    Raises:
        SubscriptionStateConflictError: record and user mirror disagree
        InvalidTransitionError: event not valid from the current status
        UnknownPlanError / ValidationError: malformed event
    """
    event_type = BillingEventType(event.event_type)
    try:
        with get_db_session() as session:
            existing = session.execute(
                select(billing_events.c.processed).where(billing_events.c.event_id == event.event_id)
            ).fetchone()
            if existing and existing[0]:
                return _duplicate(event, event_type)
            if existing is None:
                session.execute(
                    insert(billing_events).values(
                        event_id=event.event_id,
                        event_type=event_type.value,
                        user_id=event.user_id,
                        subscription_id=event.subscription_id,
                        received_at=_utcnow(),
                        processed=False,
                    )
                )

            if event_type == BillingEventType.CHECKOUT_COMPLETED and event.plan_id and is_credits_plan(event.plan_id):
                transition = _apply_credit_purchase(session, event)
            else:
                transition = _apply_transition(session, event, event_type)

            session.execute(
                update(billing_events)
                .where(billing_events.c.event_id == event.event_id)
                .values(processed=True, processed_at=_utcnow(), error=None)
            )
    except IntegrityError:
        # Race: a concurrent delivery of the same event committed first
        if _event_processed(event.event_id):
            return _duplicate(event, event_type)
        raise
    except Exception as e:
        _record_failure(event, event_type, e)
        raise

    if transition.changed:
        log_event(
            "info",
            "billing.subscription_state_changed",
            user_id=transition.user_id,
            event_type=event_type.value,
            extra={
                "event_id": transition.event_id,
                "subscription_id": transition.subscription_id,
                "previous_status": transition.previous_status.value if transition.previous_status else None,
                "status": transition.status.value if transition.status else None,
                "plan_id": transition.plan_id,
            },
        )
    return transition


def change_plan(user_id: str, new_plan_id: PlanRef, days_remaining: Optional[int] = None) -> PlanChange:
    """
    Re-point an active subscription to another subscription plan.

    Status is unchanged. With billing enabled the processor is switched to
    the new price first; a processor failure leaves local state untouched.
    When days_remaining is given the proration delta is computed; charging
    it is the billing processor's job.

    Raises:
        ValidationError: new plan is a credit pack
        CheckoutUnavailableError: new plan has no processor price configured
        BillingProviderError: the processor rejected the change
        InvalidTransitionError: user has no active subscription
        SubscriptionStateConflictError: record and user mirror disagree
    """
    new_plan = parse_plan_id(new_plan_id)
    if not is_subscription_plan(new_plan):
        raise ValidationError(f"{new_plan.value} is a credit pack; purchase it through checkout")

    with get_db_session() as session:
        user_row = load_account_row(session, user_id)
        if user_row.subscription_status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransitionError("Plan changes require an active subscription")

        record_row = _latest_subscription_row(session, user_id)
        if record_row is None:
            _raise_conflict(user_id, None, f"User {user_id} is active but has no subscription record")
        _check_mirror(record_row, user_row)

        previous_plan = PaymentPlanId(record_row.plan_id)
        proration = prorate(previous_plan, new_plan, days_remaining) if days_remaining is not None else None

        provider = get_provider()
        if provider and new_plan != previous_plan:
            provider.update_subscription_price(record_row.subscription_id, _price_for(new_plan))

        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == record_row.subscription_id)
            .values(plan_id=new_plan.value, updated_at=_utcnow())
        )
        _sync_user_mirror(session, user_id, SubscriptionStatus.ACTIVE, new_plan.value)
        subscription_id = record_row.subscription_id

    log_event(
        "info",
        "billing.plan_changed",
        user_id=user_id,
        event_type=BillingEventType.PLAN_CHANGED.value,
        extra={
            "subscription_id": subscription_id,
            "previous_plan_id": previous_plan.value,
            "plan_id": new_plan.value,
            "proration_cents": proration,
        },
    )
    return PlanChange(
        subscription_id=subscription_id,
        user_id=user_id,
        previous_plan_id=previous_plan,
        plan_id=new_plan,
        proration_cents=proration,
    )


def _require_provider() -> BillingProvider:
    provider = get_provider()
    if not provider:
        raise BillingProviderError("Billing not enabled")
    return provider


def _live_record(user_id: str, required: SubscriptionStatus) -> SubscriptionRecord:
    with get_db_session() as session:
        user_row = load_account_row(session, user_id)
        record_row = _latest_subscription_row(session, user_id)
        if record_row is None or is_terminal(_status(record_row.status)):
            raise InvalidTransitionError(f"User {user_id} has no live subscription")
        _check_mirror(record_row, user_row)
        if record_row.status != required.value:
            raise InvalidTransitionError(
                f"Subscription {record_row.subscription_id} is {record_row.status}, expected {required.value}"
            )
        return record_from_row(record_row)


def cancel_subscription(user_id: str) -> SubscriptionRecord:
    """
    Ask the processor to cancel the user's subscription at period end.

    Local state is not touched here; the processor's cancel webhook moves
    the record to CANCEL_AT_PERIOD_END.

    Raises:
        BillingProviderError: billing disabled or the processor rejected the request
        InvalidTransitionError: no ACTIVE subscription
        SubscriptionStateConflictError: record and user mirror disagree
    """
    provider = _require_provider()
    record = _live_record(user_id, SubscriptionStatus.ACTIVE)
    provider.cancel_subscription(record.subscription_id)
    log_event(
        "info",
        "billing.cancel_requested",
        user_id=user_id,
        event_type=BillingEventType.CANCEL_REQUESTED.value,
        extra={"subscription_id": record.subscription_id},
    )
    return record


def reactivate_subscription(user_id: str) -> SubscriptionRecord:
    """Undo a pending cancellation; the reactivation webhook restores ACTIVE."""
    provider = _require_provider()
    record = _live_record(user_id, SubscriptionStatus.CANCEL_AT_PERIOD_END)
    provider.reactivate_subscription(record.subscription_id)
    log_event(
        "info",
        "billing.reactivation_requested",
        user_id=user_id,
        event_type=BillingEventType.REACTIVATION_REQUESTED.value,
        extra={"subscription_id": record.subscription_id},
    )
    return record


def _price_for(plan_id: PaymentPlanId) -> str:
    price_id = processor_plan_reference(plan_id)
    if not price_id:
        raise CheckoutUnavailableError(f"No payment processor plan configured for: {plan_id.value}")
    return price_id


def start_checkout(
    user_id: str,
    plan_id: PlanRef,
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None,
) -> Optional[str]:
    """
    Start a checkout session for a subscription plan or credit pack.

    Returns:
        Checkout URL, or None if billing disabled

    Raises:
        UnknownPlanError: plan_id is not a known plan
        CheckoutUnavailableError: plan has no processor price configured
        BillingProviderError: If checkout creation fails
    """
    provider = get_provider()
    if not provider:
        return None

    plan = lookup(plan_id)
    price_id = _price_for(plan.plan_id)

    account = get_user_account(user_id)
    mode = "subscription" if is_subscription_plan(plan.plan_id) else "payment"

    return provider.create_checkout_session(
        price_id=price_id,
        mode=mode,
        success_url=success_url,
        cancel_url=cancel_url,
        customer_email=customer_email or account.email,
        metadata={"user_id": user_id, "plan_id": plan.plan_id.value},
    )


def process_webhook(headers: Dict[str, str], body: bytes) -> Optional[SubscriptionTransition]:
    """
    Verify, parse and apply a billing webhook.

    Returns None for event types the engine does not act on.

    Raises:
        BillingWebhookError: billing disabled, signature invalid or payload malformed
    """
    provider = get_provider()
    if not provider:
        raise BillingWebhookError("Billing not enabled")

    event = provider.parse_webhook(headers, body)
    if event is None:
        log_event("info", "billing.event_ignored")
        return None
    return apply_billing_event(event)
