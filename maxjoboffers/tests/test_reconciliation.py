"""
Reconciliation report tests.
"""
from sqlalchemy import select, update

from maxjoboffers.core.database import get_db_session, subscriptions, user_accounts
from maxjoboffers.features.billing.lifecycle import BillingEventType
from maxjoboffers.features.billing.provider import BillingEvent
from maxjoboffers.features.billing.reconciliation import (
    find_ledger_drift,
    find_subscription_conflicts,
    run_reconciliation,
)
from maxjoboffers.features.billing.service import apply_billing_event
from maxjoboffers.scripts.reconcile_billing import main


def _subscribe(user_id, subscription_id, event_id, plan_id="basic"):
    apply_billing_event(BillingEvent(
        event_id=event_id,
        event_type=BillingEventType.CHECKOUT_COMPLETED,
        user_id=user_id,
        subscription_id=subscription_id,
        plan_id=plan_id,
    ))


def test_clean_state_has_no_issues(make_user):
    make_user("user_alice", credits=10)
    make_user("user_bob")
    _subscribe("user_bob", "sub_b", "evt_b")

    report = run_reconciliation()

    assert report["issues_found"] == 0
    assert report["subscription_conflicts"] == []
    assert report["ledger_drift"] == []


def test_detects_mirror_conflict_without_repairing(make_user):
    make_user("user_alice")
    _subscribe("user_alice", "sub_a", "evt_a")
    with get_db_session() as session:
        session.execute(
            update(user_accounts)
            .where(user_accounts.c.user_id == "user_alice")
            .values(subscription_plan_id="enterprise")
        )

    conflicts = find_subscription_conflicts()

    assert len(conflicts) == 1
    assert conflicts[0]["subscription_id"] == "sub_a"
    assert conflicts[0]["record_plan_id"] == "basic"
    assert conflicts[0]["user_plan_id"] == "enterprise"
    with get_db_session() as session:
        status = session.execute(
            select(subscriptions.c.plan_id).where(subscriptions.c.subscription_id == "sub_a")
        ).scalar()
    assert status == "basic"


def test_only_latest_record_per_user_is_compared(make_user):
    make_user("user_alice")
    _subscribe("user_alice", "sub_old", "evt_1")
    apply_billing_event(BillingEvent(
        event_id="evt_2", event_type=BillingEventType.CANCEL_REQUESTED,
        user_id="user_alice", subscription_id="sub_old",
    ))
    apply_billing_event(BillingEvent(
        event_id="evt_3", event_type=BillingEventType.PERIOD_ENDED,
        user_id="user_alice", subscription_id="sub_old",
    ))
    _subscribe("user_alice", "sub_new", "evt_4", plan_id="enterprise")

    assert find_subscription_conflicts() == []


def test_detects_ledger_drift(make_user):
    make_user("user_alice", credits=5)
    make_user("user_bob")
    with get_db_session() as session:
        session.execute(
            update(user_accounts)
            .where(user_accounts.c.user_id == "user_bob")
            .values(credits=3)
        )

    drift = find_ledger_drift()

    assert drift == [{
        "type": "ledger_drift",
        "user_id": "user_bob",
        "balance": 3,
        "ledger_sum": 0,
        "difference": 3,
    }]


def test_script_exit_codes(make_user, capsys):
    make_user("user_alice", credits=2)
    assert main([]) == 0

    with get_db_session() as session:
        session.execute(update(user_accounts).values(credits=9))
    assert main(["--json"]) == 1
    out = capsys.readouterr().out
    assert '"issues_found": 1' in out
