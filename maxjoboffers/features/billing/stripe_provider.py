"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and maps Stripe event types onto
subscription lifecycle events.
"""
import os
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import stripe

from maxjoboffers.features.billing.lifecycle import BillingEventType
from maxjoboffers.features.billing.provider import (
    BillingEvent,
    BillingProviderError,
    BillingWebhookError,
)
from maxjoboffers.features.plans.service import plan_for_processor_reference


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY env var)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET env var)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def create_checkout_session(
        self,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Create Stripe checkout session."""
        meta = metadata or {}
        params: Dict[str, Any] = {
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": meta,
        }
        if meta.get("user_id"):
            params["client_reference_id"] = meta["user_id"]
        if customer_email:
            params["customer_email"] = customer_email
        if mode == "subscription":
            # Copy metadata onto the subscription so invoice/subscription events carry user_id
            params["subscription_data"] = {"metadata": meta}
        try:
            session = stripe.checkout.Session.create(**params)
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

    def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel at the end of the current period."""
        self._modify(subscription_id, cancel_at_period_end=True)

    def reactivate_subscription(self, subscription_id: str) -> None:
        self._modify(subscription_id, cancel_at_period_end=False)

    def update_subscription_price(self, subscription_id: str, price_id: str) -> None:
        """Swap the subscription's price; Stripe prorates the invoice."""
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            items = subscription["items"]["data"]
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")
        if not items:
            raise BillingProviderError(f"Subscription {subscription_id} has no items")
        self._modify(
            subscription_id,
            items=[{"id": items[0]["id"], "price": price_id}],
            proration_behavior="create_prorations",
        )

    def _modify(self, subscription_id: str, **params) -> None:
        try:
            stripe.Subscription.modify(subscription_id, **params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription update failed: {e}")

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> Optional[BillingEvent]:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(
                body, sig_header, self.webhook_secret
            )
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        if hasattr(event, "to_dict"):
            event = event.to_dict()
        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> Optional[BillingEvent]:
        """Parse Stripe event into a normalized BillingEvent (None if ignored)."""
        stripe_type = event["type"]
        event_id = event["id"]
        data = event.get("data", {}).get("object", {})
        previous = event.get("data", {}).get("previous_attributes", {}) or {}

        if stripe_type == "checkout.session.completed":
            metadata = data.get("metadata") or {}
            # One-time payments (credit packs) have no subscription; the session id stands in
            return self._build_event(
                event_id,
                BillingEventType.CHECKOUT_COMPLETED,
                user_id=metadata.get("user_id") or data.get("client_reference_id"),
                subscription_id=data.get("subscription") or data.get("id"),
                plan_id=metadata.get("plan_id"),
            )

        if stripe_type in ("invoice.payment_failed", "invoice.paid", "invoice.payment_succeeded"):
            subscription_id = data.get("subscription")
            if not subscription_id:
                return None
            details = data.get("subscription_details") or {}
            metadata = details.get("metadata") or {}
            event_type = (
                BillingEventType.PAYMENT_FAILED
                if stripe_type == "invoice.payment_failed"
                else BillingEventType.PAYMENT_SUCCEEDED
            )
            return self._build_event(
                event_id,
                event_type,
                user_id=metadata.get("user_id"),
                subscription_id=subscription_id,
                plan_id=metadata.get("plan_id"),
            )

        if stripe_type == "customer.subscription.updated":
            event_type = self._classify_subscription_update(data, previous)
            if event_type is None:
                return None
            return self._subscription_event(event_id, event_type, data)

        if stripe_type == "customer.subscription.deleted":
            # Stripe deletes at period end or immediately; either way the subscription is over
            return self._subscription_event(event_id, BillingEventType.SUBSCRIPTION_DELETED, data)

        return None

    def _classify_subscription_update(self, data: Dict[str, Any], previous: Dict[str, Any]) -> Optional[BillingEventType]:
        if "cancel_at_period_end" in previous:
            if data.get("cancel_at_period_end"):
                return BillingEventType.CANCEL_REQUESTED
            return BillingEventType.REACTIVATION_REQUESTED
        if "items" in previous or "plan" in previous:
            return BillingEventType.PLAN_CHANGED
        if "current_period_end" in previous and data.get("status") == "active":
            return BillingEventType.PERIOD_ENDED
        return None

    def _subscription_event(self, event_id: str, event_type: BillingEventType, data: Dict[str, Any]) -> Optional[BillingEvent]:
        metadata = data.get("metadata") or {}
        plan_id = None
        items = (data.get("items") or {}).get("data") or []
        if items:
            price_id = (items[0].get("price") or {}).get("id")
            mapped = plan_for_processor_reference(price_id)
            plan_id = mapped.value if mapped else None
        if event_type != BillingEventType.PLAN_CHANGED:
            plan_id = plan_id or metadata.get("plan_id")
        return self._build_event(
            event_id,
            event_type,
            user_id=metadata.get("user_id"),
            subscription_id=data.get("id"),
            plan_id=plan_id,
            current_period_start=_from_timestamp(data.get("current_period_start")),
            current_period_end=_from_timestamp(data.get("current_period_end")),
        )

    def _build_event(self, event_id: str, event_type: BillingEventType, *, user_id: Optional[str], **fields) -> BillingEvent:
        if not user_id:
            raise BillingWebhookError(f"Event {event_id} carries no user_id metadata")
        return BillingEvent(event_id=event_id, event_type=event_type, user_id=user_id, **fields)


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, timezone.utc)
