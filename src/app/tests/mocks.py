"""
테스트를 위한 Mock 서비스들

FakeSupabaseClient 는 DatabaseHelper 가 사용하는 postgrest 체인
(table/select/eq/order/limit/range/insert/update/upsert/execute)만 흉내 낸다.
"""
from __future__ import annotations

import copy
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import HTTPException

from core.interfaces import IAuthService, IStripeGateway
from core.plan_config import PlanConfig
from database_helper import DatabaseHelper
from services.ledger_service import LedgerService
from services.marketplace_ledger_service import MarketplaceLedgerService
from services.plan_resolver import PlanResolver
from services.stripe_gateway import StripeAPIError, StripeGateway
from services.stripe_webhook_processor import StripeWebhookProcessor
from services.webhook_event_logger import WebhookEventLogger
from services.webhook_guard import DuplicateGuard

WEBHOOK_SECRET = "whsec_test_secret"


class FakeClock:
    """고정 시각 + 수동 진행 시계"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class _FakeQuery:
    def __init__(self, client: "FakeSupabaseClient", table: str):
        self.client = client
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[Tuple[str, Any]] = []
        self.order_by: Optional[Tuple[str, bool]] = None
        self.limit_count: Optional[int] = None
        self.range_bounds: Optional[Tuple[int, int]] = None

    def select(self, *_columns, **_kwargs):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None, **_kwargs):
        self.op = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def eq(self, column: str, value: Any):
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False, **_kwargs):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def range(self, start: int, end: int):
        self.range_bounds = (start, end)
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        self.client.calls.append((self.table_name, self.op, list(self.filters)))
        if (self.table_name, self.op) in self.client.fail_on:
            raise RuntimeError(f"simulated failure: {self.table_name}.{self.op}")

        rows = self.client.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [copy.deepcopy(item) for item in payloads]
            rows.extend(inserted)
            return SimpleNamespace(data=copy.deepcopy(inserted))

        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self.payload))
                    updated.append(copy.deepcopy(row))
            return SimpleNamespace(data=updated)

        if self.op == "upsert":
            key = self.on_conflict
            for row in rows:
                if key and row.get(key) == self.payload.get(key):
                    row.update(copy.deepcopy(self.payload))
                    return SimpleNamespace(data=[copy.deepcopy(row)])
            rows.append(copy.deepcopy(self.payload))
            return SimpleNamespace(data=[copy.deepcopy(self.payload)])

        selected = [row for row in rows if self._matches(row)]
        if self.order_by:
            column, desc = self.order_by
            selected.sort(key=lambda r: str(r.get(column) or ""), reverse=desc)
        if self.range_bounds:
            start, end = self.range_bounds
            selected = selected[start:end + 1]
        if self.limit_count is not None:
            selected = selected[: self.limit_count]
        return SimpleNamespace(data=copy.deepcopy(selected))


class FakeSupabaseClient:
    """메모리 기반 Supabase 테이블"""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables or {})
        self.fail_on: Set[Tuple[str, str]] = set()
        self.calls: List[Tuple[str, str, list]] = []

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.get(name, [])

    def row(self, name: str, **filters) -> Optional[Dict[str, Any]]:
        for row in self.rows(name):
            if all(row.get(k) == v for k, v in filters.items()):
                return row
        return None

    def writes(self) -> List[Tuple[str, str]]:
        """select 를 제외한 호출 목록"""
        return [(table, op) for table, op, _ in self.calls if op != "select"]


class StubStripeGateway(IStripeGateway):
    """서명 검증은 실제 StripeGateway 로, API 조회는 미리 정한 응답으로"""

    def __init__(
        self,
        webhook_secret: Optional[str] = WEBHOOK_SECRET,
        subscriptions: Optional[Dict[str, Dict[str, Any]]] = None,
        customer_subscriptions: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        line_items: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ):
        self._verifier = StripeGateway(None, webhook_secret)
        self.subscriptions = subscriptions or {}
        self.customer_subscriptions = customer_subscriptions or {}
        self.line_items = line_items or {}
        self.calls: List[Tuple[str, Any]] = []

    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        return self._verifier.construct_event(payload, sig_header)

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        self.calls.append(("retrieve_subscription", subscription_id))
        if subscription_id not in self.subscriptions:
            raise StripeAPIError("요청한 Stripe 리소스를 찾지 못했습니다.", 404, code="resource_missing")
        return copy.deepcopy(self.subscriptions[subscription_id])

    async def list_subscriptions(self, customer_id: str, status: Optional[str] = None, limit: int = 5):
        self.calls.append(("list_subscriptions", customer_id))
        items = self.customer_subscriptions.get(customer_id, [])
        if status:
            items = [item for item in items if item.get("status") == status]
        return copy.deepcopy(items[:limit])

    async def list_checkout_line_items(self, session_id: str):
        self.calls.append(("list_checkout_line_items", session_id))
        return copy.deepcopy(self.line_items.get(session_id, []))


class MockAuthService(IAuthService):
    """토큰 문자열을 사용자 객체로 매핑하는 Mock 인증 서비스"""

    def __init__(self, users: Optional[Dict[str, Any]] = None):
        self.users = users or {}

    async def verify_auth(self, credentials) -> Any:
        user = self.users.get(credentials.credentials)
        if user is None:
            raise HTTPException(status_code=401, detail="유효하지 않은 토큰입니다.")
        return user


def make_user(user_id: str, role: Optional[str] = None) -> SimpleNamespace:
    app_metadata = {"role": role} if role else {}
    return SimpleNamespace(id=user_id, email=f"{user_id}@example.com", app_metadata=app_metadata)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe 와 같은 방식의 stripe-signature 헤더 생성"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> Dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def encode_event(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


TEST_PRICE_PLAN_MAP = {
    "price_creator_monthly": "creator",
    "price_collaborate_monthly": "collaborate",
    "price_scale_monthly": "scale",
}
CREDITS_PRICE_ID = "price_credits"


def build_stack(
    tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    *,
    gateway: Optional[StubStripeGateway] = None,
    clock: Optional[FakeClock] = None,
    credits_price_id: Optional[str] = CREDITS_PRICE_ID,
) -> SimpleNamespace:
    """실제 서비스 + 메모리 DB 로 웹훅 처리 스택 구성"""
    client = FakeSupabaseClient(tables)
    clock = clock or FakeClock()
    gateway = gateway or StubStripeGateway()
    db_helper = DatabaseHelper(client)
    plan_resolver = PlanResolver(TEST_PRICE_PLAN_MAP)
    ledger = LedgerService(db_helper, PlanConfig(), clock=clock)
    guard = DuplicateGuard(db_helper, clock=clock)
    event_logger = WebhookEventLogger(db_helper, clock=clock)
    marketplace = MarketplaceLedgerService(db_helper, clock=clock)
    processor = StripeWebhookProcessor(
        db_helper,
        gateway,
        ledger,
        guard,
        event_logger,
        plan_resolver,
        marketplace=marketplace,
        credits_price_id=credits_price_id,
    )
    return SimpleNamespace(
        client=client,
        clock=clock,
        gateway=gateway,
        db_helper=db_helper,
        plan_resolver=plan_resolver,
        ledger=ledger,
        guard=guard,
        event_logger=event_logger,
        marketplace=marketplace,
        processor=processor,
    )
