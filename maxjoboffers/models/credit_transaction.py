"""
maxjoboffers/models/credit_transaction.py

Append-only audit record for a single ledger mutation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditTransaction(BaseModel):
    """
    CreditTransaction records one grant or debit.

    - delta > 0: grant (purchase, manual top-up)
    - delta < 0: debit (reason is the metered feature tag)
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    delta: int
    reason: str
    resulting_balance: int = Field(ge=0)
    created_at: datetime
