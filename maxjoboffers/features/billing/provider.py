"""
Billing provider protocol.

Defines the interface for billing processors (Stripe, etc.) and the
normalized event shape the subscription lifecycle consumes.
This allows swapping processors without changing business logic.
"""
from typing import Protocol, Dict, Optional
from dataclasses import dataclass
from datetime import datetime

from maxjoboffers.features.billing.lifecycle import BillingEventType


@dataclass(frozen=True)
class BillingEvent:
    """A pre-authenticated billing-processor event. event_id is the idempotency key."""
    event_id: str
    event_type: BillingEventType
    user_id: str
    subscription_id: Optional[str] = None
    plan_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation (recurring or one-time by plan effect)
    - Subscription changes: cancel at period end, reactivate, switch price
    - Webhook signature verification and parsing
    """

    def create_checkout_session(
        self,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Create a checkout session.

        Args:
            price_id: Processor price ID (PAYMENTS_*_PLAN_ID value)
            mode: "subscription" for recurring plans, "payment" for credit packs
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation
            customer_email: Optional email to prefill
            metadata: Optional metadata to attach (user_id, plan_id)

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def cancel_subscription(self, subscription_id: str) -> None:
        """Ask the processor to cancel at the end of the current period."""
        ...

    def reactivate_subscription(self, subscription_id: str) -> None:
        """Undo a pending cancel-at-period-end."""
        ...

    def update_subscription_price(self, subscription_id: str, price_id: str) -> None:
        """Switch the recurring price (plan change)."""
        ...

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> Optional[BillingEvent]:
        """
        Verify webhook signature and parse event.

        Returns:
            Normalized event, or None for event types the engine ignores

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
