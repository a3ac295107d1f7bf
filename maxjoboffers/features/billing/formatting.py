"""Display helpers for subscription and billing details."""
from datetime import date, datetime
from typing import Optional, Union

from maxjoboffers.features.plans.service import pretty_plan_name
from maxjoboffers.models.subscription import SubscriptionRecord, SubscriptionStatus

STATUS_TEXT = {
    SubscriptionStatus.ACTIVE: "Active",
    SubscriptionStatus.PAST_DUE: "Past Due",
    SubscriptionStatus.CANCEL_AT_PERIOD_END: "Cancels at End of Period",
    SubscriptionStatus.DELETED: "Cancelled",
}

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "CAD": "CA$",
    "AUD": "A$",
}


def subscription_status_text(status: Optional[Union[SubscriptionStatus, str]]) -> str:
    try:
        return STATUS_TEXT[SubscriptionStatus(status)]
    except ValueError:
        return "Unknown"


def format_currency(amount_cents: int, currency: str = "USD") -> str:
    """Format an amount in cents, e.g. 1999 -> "$19.99" and -333 -> "-$3.33"."""
    code = currency.upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    sign = "-" if amount_cents < 0 else ""
    dollars, cents = divmod(abs(int(amount_cents)), 100)
    number = f"{dollars:,}.{cents:02d}"
    if symbol is None:
        return f"{sign}{code} {number}"
    return f"{sign}{symbol}{number}"


def format_date(value: Optional[Union[date, datetime, str]]) -> str:
    """Long US-style date, e.g. "October 19, 2026"."""
    if value is None:
        return "Unknown"
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def format_subscription_details(subscription: SubscriptionRecord) -> str:
    lines = [
        f"Plan: {pretty_plan_name(subscription.plan_id)}",
        f"Status: {subscription_status_text(subscription.status)}",
        "Current Period: "
        f"{format_date(subscription.current_period_start)} to {format_date(subscription.current_period_end)}",
    ]
    if subscription.cancel_at_period_end:
        lines.append("Cancels at end of current period")
    return "\n".join(lines)
