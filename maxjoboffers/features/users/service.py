"""
User account service.
- create_user_account(user_id)
- get_user_account(user_id)
"""

from typing import Optional
from sqlalchemy import select, insert
from sqlalchemy.orm import Session

from maxjoboffers.core.database import get_db_session, user_accounts
from maxjoboffers.core.errors import UserNotFoundError
from maxjoboffers.models.user_account import UserAccount


def account_from_row(row) -> UserAccount:
    return UserAccount(
        user_id=row.user_id,
        email=row.email,
        subscription_status=row.subscription_status,
        subscription_plan_id=row.subscription_plan_id,
        credits=row.credits,
    )


def load_account_row(session: Session, user_id: str):
    row = session.execute(
        select(user_accounts).where(user_accounts.c.user_id == user_id)
    ).first()
    if not row:
        raise UserNotFoundError(f"User account not found: {user_id}")
    return row


def get_user_account(user_id: str) -> UserAccount:
    with get_db_session() as session:
        return account_from_row(load_account_row(session, user_id))


def create_user_account(user_id: str, email: Optional[str] = None) -> UserAccount:
    """Create a signup-state account (0 credits, no subscription). Idempotent."""
    with get_db_session() as session:
        existing = session.execute(
            select(user_accounts).where(user_accounts.c.user_id == user_id)
        ).first()
        if existing:
            return account_from_row(existing)

        session.execute(
            insert(user_accounts).values(
                user_id=user_id,
                email=email,
                subscription_status=None,
                subscription_plan_id=None,
                credits=0,
            )
        )

    return UserAccount(user_id=user_id, email=email)
