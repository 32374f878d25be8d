"""DatabaseHelper 조회/기록 테스트"""
import asyncio

import pytest

from database_helper import DatabaseHelper
from tests.mocks import FakeSupabaseClient


def test_find_user_by_customer_checks_settings_then_wallet():
    client = FakeSupabaseClient({
        "user_settings": [{"user_id": "user-1", "stripe_customer_id": "cus_1"}],
        "wallet": [{"user_id": "user-2", "stripe_customer_id": "cus_2"}],
    })
    helper = DatabaseHelper(client)

    assert asyncio.run(helper.find_user_id_by_customer("cus_1")) == "user-1"
    assert asyncio.run(helper.find_user_id_by_customer("cus_2")) == "user-2"
    assert asyncio.run(helper.find_user_id_by_customer("cus_missing")) is None


def test_upsert_account_settings_inserts_then_updates():
    client = FakeSupabaseClient()
    helper = DatabaseHelper(client)

    asyncio.run(helper.upsert_account_settings("user-1", {"subscription_plan": "pro"}))
    asyncio.run(helper.upsert_account_settings("user-1", {"subscription_status": "active"}))

    assert client.rows("user_settings") == [
        {"user_id": "user-1", "subscription_plan": "pro", "subscription_status": "active"}
    ]


def test_update_account_settings_without_row_returns_false():
    helper = DatabaseHelper(FakeSupabaseClient())

    assert asyncio.run(helper.update_account_settings("user-x", {"subscription_status": "active"})) is False


def test_write_failures_return_none():
    client = FakeSupabaseClient({"wallet": [{"user_id": "user-1", "credits_balance": 5}]})
    client.fail_on.add(("wallet", "update"))
    helper = DatabaseHelper(client)

    assert asyncio.run(helper.update_wallet("user-1", {"credits_balance": 10})) is None
    assert client.row("wallet", user_id="user-1")["credits_balance"] == 5


def test_list_webhook_logs_filters_and_paginates():
    logs = [
        {"event_id": f"evt_{i}", "event_type": "charge.succeeded", "status": "success",
         "user_id": "user-1", "processed_at": f"2025-01-01T00:00:{i:02d}+00:00"}
        for i in range(5)
    ]
    logs.append({"event_id": "evt_f", "event_type": "invoice.payment_failed", "status": "failed",
                 "user_id": "user-2", "processed_at": "2025-01-02T00:00:00+00:00"})
    helper = DatabaseHelper(FakeSupabaseClient({"webhook_logs": logs}))

    first = asyncio.run(helper.list_webhook_logs(status="success", page=1, page_size=2))
    assert [item["event_id"] for item in first["items"]] == ["evt_4", "evt_3"]
    assert first["has_more"] is True

    last = asyncio.run(helper.list_webhook_logs(status="success", page=3, page_size=2))
    assert [item["event_id"] for item in last["items"]] == ["evt_0"]
    assert last["has_more"] is False

    failed = asyncio.run(helper.list_webhook_logs(status="failed"))
    assert [item["event_id"] for item in failed["items"]] == ["evt_f"]


def test_latest_webhook_log_lookup_error_propagates():
    client = FakeSupabaseClient()
    client.fail_on.add(("webhook_logs", "select"))
    helper = DatabaseHelper(client)

    with pytest.raises(RuntimeError):
        asyncio.run(helper.get_latest_webhook_log("evt_1"))
