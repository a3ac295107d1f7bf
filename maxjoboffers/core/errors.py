"""Error taxonomy for the entitlement engine.

Status codes are hints for the request-handling collaborator that renders
the error; the core itself never speaks HTTP.
"""

from typing import Optional
from uuid import uuid4

from maxjoboffers.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def to_payload(self) -> dict:
        rid = self.request_id or get_request_id() or str(uuid4())
        return _error_payload(self.code, self.message, rid)


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class UserNotFoundError(NotFoundError):
    code = "user_not_found"


class UnknownPlanError(ValidationError):
    """Plan id is not part of the payment plan enumeration."""
    code = "unknown_plan"


class InvalidAmountError(ValidationError):
    """Non-positive (or non-integer) credit amount passed to the ledger."""
    code = "invalid_amount"


class InsufficientCreditsError(AppError):
    """Balance cannot cover the requested debit. Surfaced as an upsell prompt."""
    code = "insufficient_credits"
    status_code = 402

    def __init__(self, message: str, *, balance: Optional[int] = None, required: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.balance = balance
        self.required = required


class SubscriptionStateConflictError(ConflictError):
    """Subscription record and user mirror disagree; needs manual reconciliation."""
    code = "subscription_state_conflict"


class InvalidTransitionError(ConflictError):
    code = "invalid_subscription_transition"


class CheckoutUnavailableError(AppError):
    """Plan has no billing-processor reference configured."""
    code = "checkout_unavailable"
    status_code = 503


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }
