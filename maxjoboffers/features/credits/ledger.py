"""
Credit ledger.

Manages credit accounting with:
- Append-only credit_transactions table (one row per mutation)
- Non-negative balances: a debit that would overdraw is rejected, never clamped
- Compare-and-decrement at mutation time, serialized per user
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from maxjoboffers.core.database import credit_transactions, get_db_session, user_accounts
from maxjoboffers.core.errors import InsufficientCreditsError, InvalidAmountError, UserNotFoundError
from maxjoboffers.core.logging import log_event
from maxjoboffers.models.credit_transaction import CreditTransaction

PURCHASE_REASON = "purchase"

LOCK_STRIPES = 64

# Fixed pool; users hashing to the same stripe share a lock.
_user_locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]


def _lock_for(user_id: str) -> threading.Lock:
    return _user_locks[hash(user_id) % LOCK_STRIPES]


@contextmanager
def _user_lock(user_id: str) -> Iterator[None]:
    """Serialize ledger mutations for one user within this process."""
    with _lock_for(user_id):
        yield


@contextmanager
def _ledger_session(user_id: str, session: Optional[Session]) -> Iterator[Session]:
    # A caller-owned session commits (or rolls back) on the caller's schedule.
    if session is not None:
        yield session
        return
    with _user_lock(user_id):
        with get_db_session() as own:
            yield own


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Credit amount must be a positive integer, got {amount!r}")


def _current_balance(db: Session, user_id: str) -> int:
    row = db.execute(
        select(user_accounts.c.credits).where(user_accounts.c.user_id == user_id)
    ).fetchone()
    if row is None:
        raise UserNotFoundError(f"User account not found: {user_id}")
    return int(row[0])


def _append_transaction(db: Session, user_id: str, delta: int, reason: str, resulting_balance: int) -> CreditTransaction:
    created_at = datetime.now(timezone.utc)
    result = db.execute(
        insert(credit_transactions).values(
            user_id=user_id,
            delta=delta,
            reason=reason,
            resulting_balance=resulting_balance,
            created_at=created_at,
        )
    )
    return CreditTransaction(
        id=result.inserted_primary_key[0],
        user_id=user_id,
        delta=delta,
        reason=reason,
        resulting_balance=resulting_balance,
        created_at=created_at,
    )


def get_balance(user_id: str) -> int:
    with get_db_session() as session:
        return _current_balance(session, user_id)


def grant(user_id: str, amount: int, reason: str, *, session: Optional[Session] = None) -> CreditTransaction:
    """
    Add credits to a user's balance.

    Raises:
        InvalidAmountError: amount is not a positive integer
        UserNotFoundError: no such account
    """
    _validate_amount(amount)
    with _ledger_session(user_id, session) as db:
        result = db.execute(
            update(user_accounts)
            .where(user_accounts.c.user_id == user_id)
            .values(credits=user_accounts.c.credits + amount)
        )
        if result.rowcount == 0:
            raise UserNotFoundError(f"User account not found: {user_id}")
        balance = _current_balance(db, user_id)
        txn = _append_transaction(db, user_id, amount, reason, balance)

    log_event(
        "info",
        "credits.granted",
        user_id=user_id,
        event_type="credits.grant",
        extra={"amount": amount, "reason": reason, "balance": balance},
    )
    return txn


def debit(user_id: str, amount: int, reason: str, *, session: Optional[Session] = None) -> CreditTransaction:
    """
    Remove credits from a user's balance.

    The sufficiency check and the decrement are one conditional UPDATE, so a
    stale earlier entitlement check cannot push the balance below zero.

    Raises:
        InvalidAmountError: amount is not a positive integer
        InsufficientCreditsError: amount exceeds the balance (balance unchanged)
        UserNotFoundError: no such account
    """
    _validate_amount(amount)
    with _ledger_session(user_id, session) as db:
        result = db.execute(
            update(user_accounts)
            .where(user_accounts.c.user_id == user_id)
            .where(user_accounts.c.credits >= amount)
            .values(credits=user_accounts.c.credits - amount)
        )
        if result.rowcount == 0:
            balance = _current_balance(db, user_id)
            log_event(
                "info",
                "credits.insufficient",
                user_id=user_id,
                event_type="credits.debit",
                error_code=InsufficientCreditsError.code,
                extra={"amount": amount, "reason": reason, "balance": balance},
            )
            raise InsufficientCreditsError(
                f"Insufficient credits: balance {balance}, required {amount}",
                balance=balance,
                required=amount,
            )
        balance = _current_balance(db, user_id)
        txn = _append_transaction(db, user_id, -amount, reason, balance)

    log_event(
        "info",
        "credits.debited",
        user_id=user_id,
        event_type="credits.debit",
        extra={"amount": amount, "reason": reason, "balance": balance},
    )
    return txn


def get_user_ledger(user_id: str, limit: int = 20) -> List[CreditTransaction]:
    """Get recent ledger entries for user, newest first."""
    with get_db_session() as session:
        rows = session.execute(
            select(credit_transactions)
            .where(credit_transactions.c.user_id == user_id)
            .order_by(credit_transactions.c.id.desc())
            .limit(limit)
        ).fetchall()

    return [
        CreditTransaction(
            id=row.id,
            user_id=row.user_id,
            delta=row.delta,
            reason=row.reason,
            resulting_balance=row.resulting_balance,
            created_at=row.created_at,
        )
        for row in rows
    ]
