"""
Billing reconciliation checks.

Report-only: detects subscription records whose user mirror disagrees and
users whose credit balance differs from their ledger sum. Nothing is
repaired here; conflicts are surfaced for an operator.
"""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import func, select

from maxjoboffers.core.database import (
    credit_transactions,
    get_db_session,
    subscriptions,
    user_accounts,
)
from maxjoboffers.core.logging import log_event
from maxjoboffers.features.billing.service import mirror_mismatch


def find_subscription_conflicts() -> List[Dict[str, Any]]:
    """Latest subscription record per user whose account mirror disagrees."""
    latest = select(func.max(subscriptions.c.id)).group_by(subscriptions.c.user_id)
    issues = []
    with get_db_session() as session:
        rows = session.execute(
            select(
                subscriptions.c.subscription_id,
                subscriptions.c.user_id,
                subscriptions.c.plan_id,
                subscriptions.c.status,
                user_accounts.c.subscription_status,
                user_accounts.c.subscription_plan_id,
            )
            .join(user_accounts, user_accounts.c.user_id == subscriptions.c.user_id)
            .where(subscriptions.c.id.in_(latest))
            .order_by(subscriptions.c.user_id)
        ).fetchall()

    for r in rows:
        if mirror_mismatch(record_row=r, user_row=r):
            issues.append({
                "type": "subscription_state_conflict",
                "subscription_id": r.subscription_id,
                "user_id": r.user_id,
                "record_status": r.status,
                "record_plan_id": r.plan_id,
                "user_status": r.subscription_status,
                "user_plan_id": r.subscription_plan_id,
            })

    for issue in issues:
        log_event(
            "warning",
            "reconcile.subscription_conflict",
            user_id=issue["user_id"],
            error_code="subscription_state_conflict",
            extra=issue,
        )
    return issues


def find_ledger_drift() -> List[Dict[str, Any]]:
    """Users whose stored balance differs from the sum of their transactions."""
    ledger_sums = (
        select(
            credit_transactions.c.user_id,
            func.sum(credit_transactions.c.delta).label("ledger_sum"),
        )
        .group_by(credit_transactions.c.user_id)
        .subquery()
    )
    with get_db_session() as session:
        rows = session.execute(
            select(
                user_accounts.c.user_id,
                user_accounts.c.credits,
                func.coalesce(ledger_sums.c.ledger_sum, 0).label("ledger_sum"),
            )
            .select_from(
                user_accounts.outerjoin(ledger_sums, ledger_sums.c.user_id == user_accounts.c.user_id)
            )
            .order_by(user_accounts.c.user_id)
        ).fetchall()

    drift = []
    for user_id, credits, ledger_sum in rows:
        if int(credits) != int(ledger_sum):
            drift.append({
                "type": "ledger_drift",
                "user_id": user_id,
                "balance": int(credits),
                "ledger_sum": int(ledger_sum),
                "difference": int(credits) - int(ledger_sum),
            })

    for issue in drift:
        log_event("warning", "reconcile.ledger_drift", user_id=issue["user_id"], extra=issue)
    return drift


def run_reconciliation() -> Dict[str, Any]:
    conflicts = find_subscription_conflicts()
    drift = find_ledger_drift()
    return {
        "issues_found": len(conflicts) + len(drift),
        "subscription_conflicts": conflicts,
        "ledger_drift": drift,
    }
