import pytest

from maxjoboffers.core.errors import UserNotFoundError
from maxjoboffers.features.users.service import create_user_account, get_user_account


def test_new_account_starts_empty():
    account = create_user_account("user_new", email="new@example.com")

    assert account.credits == 0
    assert account.subscription_status is None
    assert account.subscription_plan_id is None
    assert get_user_account("user_new").email == "new@example.com"


def test_create_is_idempotent(make_user):
    make_user("user_alice", credits=4)

    again = create_user_account("user_alice")

    assert again.credits == 4


def test_missing_account():
    with pytest.raises(UserNotFoundError):
        get_user_account("ghost")
