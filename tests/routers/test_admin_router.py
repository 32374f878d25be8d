"""관리자 라우터 테스트"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.middleware import setup_exception_handlers
from core.plan_config import PlanConfig
from database_helper import DatabaseHelper
from routers import admin_router
from services.ledger_service import LedgerService
from tests.mocks import FakeClock, FakeSupabaseClient, MockAuthService, make_user

ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}


@pytest.fixture
def supabase():
    return FakeSupabaseClient({
        "user_settings": [{"user_id": "user-1", "subscription_plan": "pro", "subscription_status": "active"}],
        "wallet": [{"user_id": "user-1", "credits_balance": 20, "current_plan": "creator"}],
        "transactions": [
            {"user_id": "user-1", "amount": 20, "type": "subscription_grant",
             "created_at": "2025-01-01T00:00:00+00:00"},
        ],
        "webhook_logs": [
            {"event_id": "evt_1", "event_type": "invoice.payment_failed", "status": "failed",
             "user_id": "user-1", "error": "User not found", "processed_at": "2025-01-02T00:00:00+00:00"},
            {"event_id": "evt_2", "event_type": "charge.succeeded", "status": "success",
             "user_id": "user-1", "error": None, "processed_at": "2025-01-03T00:00:00+00:00"},
        ],
    })


@pytest.fixture
def test_client(monkeypatch, supabase) -> TestClient:
    db_helper = DatabaseHelper(supabase)
    auth = MockAuthService({
        "admin-token": make_user("admin-1", role="admin"),
        "user-token": make_user("user-1"),
    })
    monkeypatch.setattr(admin_router, "auth_service", auth)
    monkeypatch.setattr(admin_router, "ledger_service", LedgerService(db_helper, PlanConfig(), clock=FakeClock()))
    monkeypatch.setattr(admin_router, "db_helper", db_helper)

    app = FastAPI()
    setup_exception_handlers(app)
    app.include_router(admin_router.router)
    return TestClient(app)


def test_non_admin_is_forbidden(test_client: TestClient):
    response = test_client.get("/api/v1/admin/webhook-logs", headers={"Authorization": "Bearer user-token"})

    assert response.status_code == 403


def test_missing_token_is_unauthorized(test_client: TestClient):
    response = test_client.get("/api/v1/admin/webhook-logs")

    assert response.status_code == 401


def test_list_failed_webhook_logs(test_client: TestClient):
    response = test_client.get("/api/v1/admin/webhook-logs", params={"status": "failed"}, headers=ADMIN_HEADERS)

    assert response.status_code == 200
    data = response.json()["data"]
    assert [item["event_id"] for item in data["items"]] == ["evt_1"]
    assert data["page"] == 1


def test_wallet_detail(test_client: TestClient):
    response = test_client.get("/api/v1/admin/wallets/user-1", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["wallet"]["credits_balance"] == 20
    assert data["account"]["subscription_plan"] == "pro"
    assert data["plan"]["monthly_credits"] == 50
    assert len(data["transactions"]) == 1


def test_wallet_detail_unknown_user(test_client: TestClient):
    response = test_client.get("/api/v1/admin/wallets/nobody", headers=ADMIN_HEADERS)

    assert response.status_code == 404


def test_adjust_credits_records_transaction(test_client: TestClient, supabase):
    """관리자 조정은 adjustment 거래로 기록된다"""

    response = test_client.post(
        "/api/v1/admin/wallets/user-1/credits",
        json={"amount": -5, "reason": "중복 지급 정정"},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["data"]["credits_after"] == 15
    assert supabase.row("wallet", user_id="user-1")["credits_balance"] == 15
    adjustment = supabase.row("transactions", type="adjustment")
    assert adjustment["metadata"] == {"admin_id": "admin-1"}


def test_adjust_credits_cannot_overdraw(test_client: TestClient, supabase):
    response = test_client.post(
        "/api/v1/admin/wallets/user-1/credits",
        json={"amount": -50, "reason": "정정"},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 422
    assert supabase.row("wallet", user_id="user-1")["credits_balance"] == 20
