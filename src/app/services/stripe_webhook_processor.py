"""
Stripe 웹훅 이벤트 처리기

검증된 이벤트를 타입별 핸들러 하나로 보내고, 결과를 webhook_logs 에 정확히 한 건 기록한다.
- 알 수 없는 이벤트: 성공 + "Unhandled event type" 기록
- 중복/연속 이벤트: 성공 + "Duplicate prevented" 기록
- 핸들러 예외: 실패 + 오류 메시지 기록 (HTTP 응답은 항상 수신 확인)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.plan_config import PlanId, SubscriptionStatus
from services.ledger_service import credits_for_amount
from services.marketplace_ledger_service import is_template_purchase
from services.plan_resolver import extract_price_ids, normalize_subscription_status, parse_plan_id
from services.stripe_gateway import StripeAPIError, StripeConfigurationError
from services.webhook_event_logger import STATUS_FAILED, STATUS_SUCCESS

logger = logging.getLogger(__name__)

NOTE_UNHANDLED = "Unhandled event type"
NOTE_DUPLICATE = "Duplicate prevented"
NOTE_MISSING_USER = "Missing user ID"
NOTE_USER_NOT_FOUND = "User not found"


class StripeEventType(str, Enum):
    """처리 대상 Stripe 이벤트"""
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    SUBSCRIPTION_TRIAL_WILL_END = "customer.subscription.trial_will_end"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_REFUNDED = "charge.refunded"

    @classmethod
    def parse(cls, value: Any) -> Optional["StripeEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(slots=True)
class HandlerOutcome:
    status: str = STATUS_SUCCESS
    note: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class StripeHandlerContext:
    event_type: StripeEventType
    event_id: Optional[str]
    payload: Dict[str, Any]
    obj: Dict[str, Any]
    processor: "StripeWebhookProcessor"
    user_id: Optional[str] = None


HandlerFunc = Callable[[StripeHandlerContext], Awaitable[HandlerOutcome]]


def _get(d: Dict, *keys: str, default=None):
    cur = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _id_of(value: Any) -> Optional[str]:
    """확장(expand)된 객체 또는 ID 문자열에서 ID 추출"""
    if isinstance(value, dict):
        value = value.get("id")
    return value if isinstance(value, str) and value else None


def _timestamp_iso(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and value > 0:
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    return None


def _failed(note: str, **details) -> HandlerOutcome:
    return HandlerOutcome(STATUS_FAILED, note, details)


def _skipped_duplicate() -> HandlerOutcome:
    return HandlerOutcome(STATUS_SUCCESS, NOTE_DUPLICATE, {"duplicate": True})


async def _handle_checkout_completed(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    session = ctx.obj
    metadata = session.get("metadata") or {}

    if is_template_purchase(metadata):
        ctx.user_id = metadata.get("buyer_id") or session.get("client_reference_id")
        if p.marketplace is None:
            return _failed("Marketplace ledger unavailable")
        if not await p.marketplace.record_sale(session):
            return _failed("Marketplace sale write failed")
        return HandlerOutcome(details={"marketplace_sale": True})

    user_id = await p.resolve_user_id(session, include_client_reference=True)
    if not user_id:
        logger.error("[STRIPE] checkout session without user: %s", session.get("id"))
        return _failed(NOTE_MISSING_USER)
    ctx.user_id = user_id

    details: Dict[str, Any] = {}
    if session.get("mode") == "payment":
        details["purchase"] = await _purchase_from_checkout(ctx, user_id)

    subscription_id = _id_of(session.get("subscription"))
    if not subscription_id and session.get("mode") != "subscription":
        return HandlerOutcome(details=details)

    subscription = await p.load_subscription(subscription_id, _id_of(session.get("customer")))
    if not subscription:
        return _failed("Subscription not found", subscription_id=subscription_id)

    if not await p.guard.should_process(user_id, ctx.event_id):
        return _skipped_duplicate()

    plan = (
        p.plan_resolver.plan_from_metadata(subscription.get("metadata"))
        or p.plan_resolver.plan_from_metadata(metadata)
        or p.plan_resolver.resolve(subscription)
    )
    status = normalize_subscription_status(subscription.get("status"))
    applied = await p.ledger.apply_plan_change(
        user_id,
        plan,
        status,
        True,
        customer_id=_id_of(subscription.get("customer")) or _id_of(session.get("customer")),
        subscription_id=_id_of(subscription.get("id")) or subscription_id,
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
    )
    if not applied:
        return _failed("Account billing record update failed")

    details.update({"plan": plan.value, "status": status.value})
    return HandlerOutcome(details=details)


async def _purchase_from_checkout(ctx: StripeHandlerContext, user_id: str) -> Optional[Dict[str, Any]]:
    p = ctx.processor
    session = ctx.obj
    if not p.credits_price_id:
        return None

    line_items = await p.gateway.list_checkout_line_items(session.get("id"))
    credit_lines = [item for item in line_items if p.plan_resolver.contains_price(item, p.credits_price_id)]
    if not credit_lines:
        return None

    amount_paid = sum(int(item.get("amount_total") or 0) for item in credit_lines) or session.get("amount_total")
    currency = session.get("currency") or _get(credit_lines[0], "currency")
    credits = credits_for_amount(amount_paid, currency)
    return await p.ledger.purchase_credits(
        user_id,
        credits,
        payment_id=_id_of(session.get("payment_intent")) or session.get("id"),
        amount_paid=amount_paid,
        currency=currency,
        source="checkout",
    )


async def _handle_subscription_upsert(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    subscription = ctx.obj

    user_id = await p.resolve_user_id(subscription)
    if not user_id:
        logger.error("[STRIPE] user not found for customer: %s", subscription.get("customer"))
        return _failed(NOTE_USER_NOT_FOUND)
    ctx.user_id = user_id

    if not await p.guard.should_process(user_id, ctx.event_id):
        return _skipped_duplicate()

    plan = p.plan_resolver.resolve(subscription)
    status = normalize_subscription_status(subscription.get("status"))
    is_new = ctx.event_type is StripeEventType.SUBSCRIPTION_CREATED
    applied = await p.ledger.apply_plan_change(
        user_id,
        plan,
        status,
        is_new,
        customer_id=_id_of(subscription.get("customer")),
        subscription_id=subscription.get("id"),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
    )
    if not applied:
        return _failed("Account billing record update failed")
    return HandlerOutcome(details={"plan": plan.value, "status": status.value, "is_new": is_new})


async def _handle_subscription_deleted(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    subscription = ctx.obj

    user_id = await p.resolve_user_id(subscription)
    if not user_id:
        return _failed(NOTE_USER_NOT_FOUND)
    ctx.user_id = user_id

    if not await p.ledger.cancel_subscription(user_id, subscription_id=subscription.get("id")):
        return _failed("Subscription cancellation write failed")
    return HandlerOutcome(details={"canceled": True})


async def _handle_trial_will_end(ctx: StripeHandlerContext) -> HandlerOutcome:
    ctx.user_id = await ctx.processor.resolve_user_id(ctx.obj)
    logger.info(
        "[STRIPE] trial ending soon: user_id=%s subscription=%s trial_end=%s",
        ctx.user_id,
        ctx.obj.get("id"),
        _timestamp_iso(ctx.obj.get("trial_end")),
    )
    return HandlerOutcome()


async def _handle_invoice_payment_succeeded(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    invoice = ctx.obj

    user_id = await p.resolve_user_id(invoice)
    if not user_id:
        return _failed(NOTE_USER_NOT_FOUND)
    ctx.user_id = user_id

    details: Dict[str, Any] = {}
    renewal_plan: Optional[PlanId] = None

    # 쓰기 전에 가드를 먼저 확인
    if invoice.get("billing_reason") == "subscription_cycle":
        current_plan, current_status = await p.current_plan_state(user_id)
        if current_plan is not None and current_plan.is_paid and current_status is SubscriptionStatus.ACTIVE:
            if not await p.guard.should_process(user_id, ctx.event_id):
                return _skipped_duplicate()
            lines = _get(invoice, "lines", "data", default=[]) or []
            price_ids = [price_id for line in lines for price_id in extract_price_ids(line)]
            renewal_plan = (
                p.plan_resolver.plan_from_metadata(p.subscription_metadata(invoice))
                or p.plan_resolver.plan_from_prices(price_ids)
                or current_plan
            )
        else:
            logger.info(
                "[STRIPE] renewal skipped, no active paid plan: user_id=%s plan=%s status=%s",
                user_id,
                current_plan,
                current_status,
            )

    purchase = await _purchase_from_invoice(ctx, user_id)
    if purchase is not None:
        details["purchase"] = purchase

    if renewal_plan is not None:
        renewed = await p.ledger.apply_renewal(
            user_id,
            renewal_plan,
            subscription_id=p.invoice_subscription_id(invoice),
            invoice_id=invoice.get("id"),
        )
        if not renewed:
            return _failed("Renewal write failed")
        details["renewal"] = renewal_plan.value
        return HandlerOutcome(details=details)

    paid_at = _timestamp_iso(_get(invoice, "status_transitions", "paid_at")) or _timestamp_iso(invoice.get("created"))
    await p.ledger.record_payment(user_id, paid_at)
    return HandlerOutcome(details=details)


async def _purchase_from_invoice(ctx: StripeHandlerContext, user_id: str) -> Optional[Dict[str, Any]]:
    p = ctx.processor
    invoice = ctx.obj
    if not p.credits_price_id:
        return None

    lines = _get(invoice, "lines", "data", default=[]) or []
    credit_lines = [line for line in lines if p.plan_resolver.contains_price(line, p.credits_price_id)]
    if not credit_lines:
        return None

    amount_paid = sum(int(line.get("amount") or 0) for line in credit_lines) or invoice.get("amount_paid")
    return await p.ledger.purchase_credits(
        user_id,
        credits_for_amount(amount_paid, invoice.get("currency")),
        payment_id=_id_of(invoice.get("payment_intent")) or invoice.get("id"),
        amount_paid=amount_paid,
        currency=invoice.get("currency"),
        source="invoice",
    )


async def _handle_invoice_payment_failed(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    user_id = await p.resolve_user_id(ctx.obj)
    if not user_id:
        return _failed(NOTE_USER_NOT_FOUND)
    ctx.user_id = user_id

    if not await p.ledger.mark_past_due(user_id):
        return _failed("Past-due status write failed")
    return HandlerOutcome(details={"status": SubscriptionStatus.PAST_DUE.value})


async def _handle_charge_succeeded(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    charge = ctx.obj
    user_id = await p.resolve_user_id(charge)
    if not user_id:
        return _failed(NOTE_USER_NOT_FOUND)
    ctx.user_id = user_id

    await p.ledger.record_payment(user_id, _timestamp_iso(charge.get("created")))
    return HandlerOutcome()


async def _handle_charge_refunded(ctx: StripeHandlerContext) -> HandlerOutcome:
    p = ctx.processor
    charge = ctx.obj
    payment_id = _id_of(charge.get("payment_intent")) or charge.get("id")

    if p.marketplace is not None and (
        is_template_purchase(charge.get("metadata")) or await p.marketplace.find_sale(payment_id)
    ):
        if not await p.marketplace.record_refund(charge):
            return _failed("Marketplace refund write failed")
        return HandlerOutcome(details={"marketplace_refund": True})

    user_id = await p.resolve_user_id(charge)
    ctx.user_id = user_id
    if not user_id:
        return HandlerOutcome(details={"refund": None})

    refund_id = _id_of((_get(charge, "refunds", "data", default=[]) or [None])[0])
    result = await p.ledger.refund_credits(
        user_id,
        payment_id,
        refund_id=refund_id,
        amount_refunded=charge.get("amount_refunded"),
        currency=charge.get("currency"),
    )
    return HandlerOutcome(details={"refund": result})


HANDLER_MAP: Dict[StripeEventType, HandlerFunc] = {
    StripeEventType.CHECKOUT_SESSION_COMPLETED: _handle_checkout_completed,
    StripeEventType.SUBSCRIPTION_CREATED: _handle_subscription_upsert,
    StripeEventType.SUBSCRIPTION_UPDATED: _handle_subscription_upsert,
    StripeEventType.SUBSCRIPTION_DELETED: _handle_subscription_deleted,
    StripeEventType.SUBSCRIPTION_TRIAL_WILL_END: _handle_trial_will_end,
    StripeEventType.INVOICE_PAYMENT_SUCCEEDED: _handle_invoice_payment_succeeded,
    StripeEventType.INVOICE_PAYMENT_FAILED: _handle_invoice_payment_failed,
    StripeEventType.CHARGE_SUCCEEDED: _handle_charge_succeeded,
    StripeEventType.CHARGE_REFUNDED: _handle_charge_refunded,
}

_unmapped = set(StripeEventType) - set(HANDLER_MAP)
if _unmapped:
    raise RuntimeError(f"핸들러가 없는 Stripe 이벤트: {sorted(e.value for e in _unmapped)}")


class StripeWebhookProcessor:
    """이벤트 라우팅 및 처리 결과 기록"""

    def __init__(
        self,
        db_helper,
        gateway,
        ledger,
        guard,
        event_logger,
        plan_resolver,
        *,
        marketplace=None,
        credits_price_id: Optional[str] = None,
    ):
        self.db_helper = db_helper
        self.gateway = gateway
        self.ledger = ledger
        self.guard = guard
        self.event_logger = event_logger
        self.plan_resolver = plan_resolver
        self.marketplace = marketplace
        self.credits_price_id = credits_price_id

    @staticmethod
    def subscription_metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
        """인보이스에 복사된 구독 메타데이터 (구/신 API 모두)"""
        for path in (("subscription_details", "metadata"), ("parent", "subscription_details", "metadata")):
            value = _get(obj, *path)
            if isinstance(value, dict) and value:
                return value
        return {}

    @staticmethod
    def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
        return _id_of(invoice.get("subscription")) or _id_of(
            _get(invoice, "parent", "subscription_details", "subscription")
        )

    async def resolve_user_id(self, obj: Dict[str, Any], *, include_client_reference: bool = False) -> Optional[str]:
        """metadata.user_id → client_reference_id → 고객 ID 조회 순으로 사용자 확인"""
        for metadata in (obj.get("metadata"), self.subscription_metadata(obj)):
            if isinstance(metadata, dict) and metadata.get("user_id"):
                return metadata["user_id"]

        if include_client_reference and obj.get("client_reference_id"):
            return obj["client_reference_id"]

        customer_id = _id_of(obj.get("customer"))
        if customer_id:
            return await self.db_helper.find_user_id_by_customer(customer_id)
        return None

    async def load_subscription(
        self,
        subscription_id: Optional[str],
        customer_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        """구독 조회, 실패 시 고객의 활성 구독 목록으로 대체"""
        if subscription_id:
            try:
                return await self.gateway.retrieve_subscription(subscription_id)
            except (StripeAPIError, StripeConfigurationError) as e:
                logger.warning("[STRIPE] subscription retrieve failed, falling back to list: %s", e)

        if customer_id:
            subscriptions: List[Dict[str, Any]] = await self.gateway.list_subscriptions(
                customer_id, status="active", limit=1
            )
            if subscriptions:
                return subscriptions[0]
        return None

    async def current_plan_state(self, user_id: str):
        """계정의 현재 플랜과 상태 (user_settings → wallet 순)"""
        account = await self.db_helper.get_account_settings(user_id)
        if account and account.get("subscription_plan"):
            return (
                parse_plan_id(account.get("subscription_plan")),
                normalize_subscription_status(account.get("subscription_status")),
            )
        wallet = await self.db_helper.get_wallet(user_id)
        if wallet:
            return (
                parse_plan_id(wallet.get("current_plan")),
                normalize_subscription_status(wallet.get("subscription_status")),
            )
        return None, None

    async def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """이벤트 하나를 처리하고 로그 한 건을 남긴다"""
        raw_type = event.get("type") or ""
        event_id = event.get("id")
        event_type = StripeEventType.parse(raw_type)

        if event_type is None:
            logger.info("[STRIPE] Unhandled event type: %s (%s)", raw_type, event_id)
            await self.event_logger.log(raw_type, event_id, STATUS_SUCCESS, NOTE_UNHANDLED)
            return {
                "event_id": event_id,
                "event_type": raw_type,
                "status": STATUS_SUCCESS,
                "note": NOTE_UNHANDLED,
                "handled": False,
                "user_id": None,
                "details": {},
            }

        ctx = StripeHandlerContext(
            event_type=event_type,
            event_id=event_id,
            payload=event,
            obj=_get(event, "data", "object", default={}) or {},
            processor=self,
        )
        logger.info("[STRIPE] event=%s id=%s object=%s", event_type.value, event_id, ctx.obj.get("id"))

        handler = HANDLER_MAP[event_type]
        try:
            outcome = await handler(ctx)
        except Exception as e:
            logger.error("[STRIPE] handler failed: event=%s id=%s error=%s", event_type.value, event_id, e, exc_info=True)
            outcome = _failed(str(e) or e.__class__.__name__)

        await self.event_logger.log(event_type.value, event_id, outcome.status, outcome.note, ctx.user_id)
        return {
            "event_id": event_id,
            "event_type": event_type.value,
            "status": outcome.status,
            "note": outcome.note,
            "handled": True,
            "user_id": ctx.user_id,
            "details": outcome.details,
        }
