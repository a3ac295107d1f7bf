# maxjoboffers/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Add repo root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(scope="function", autouse=True)
def fresh_db(tmp_path):
    """
    Fresh schema for every test.

    Uses TEST_DATABASE_URL when set (e.g. PostgreSQL in CI), otherwise a
    SQLite file under tmp_path.
    """
    from maxjoboffers.core.database import (
        dispose_engine,
        drop_all_tables,
        init_engine,
        reset_database,
    )

    url = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'maxjoboffers_test.db'}"
    init_engine(url)
    reset_database()
    yield url
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def make_user():
    """Factory: create an account, optionally with credits."""
    from maxjoboffers.features.credits import ledger
    from maxjoboffers.features.users.service import create_user_account, get_user_account

    def _make(user_id: str = "user_alice", credits: int = 0, email=None):
        create_user_account(user_id, email=email)
        if credits:
            ledger.grant(user_id, credits, ledger.PURCHASE_REASON)
        return get_user_account(user_id)

    return _make


@pytest.fixture
def price_ids(monkeypatch):
    """Configure processor price ids for every plan."""
    mapping = {
        "PAYMENTS_BASIC_SUBSCRIPTION_PLAN_ID": "price_basic",
        "PAYMENTS_PROFESSIONAL_SUBSCRIPTION_PLAN_ID": "price_pro",
        "PAYMENTS_ENTERPRISE_SUBSCRIPTION_PLAN_ID": "price_ent",
        "PAYMENTS_CREDITS_10_PLAN_ID": "price_c10",
        "PAYMENTS_CREDITS_50_PLAN_ID": "price_c50",
        "PAYMENTS_CREDITS_100_PLAN_ID": "price_c100",
    }
    for key, value in mapping.items():
        monkeypatch.setenv(key, value)
    return mapping
