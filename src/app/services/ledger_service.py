"""
크레딧 원장 서비스
플랜 변경, 해지, 결제 실패, 정기 갱신, 크레딧 구매/환불을
user_settings(레거시) 와 wallet 두 레코드에 반영하고 transactions 에 기록한다.

user_settings 쓰기가 1차 쓰기이며 실패 시 작업 전체가 실패한다.
wallet 쓰기와 거래 내역 기록은 2차 쓰기로, 실패해도 로그만 남기고 되돌리지 않는다.
"""
import logging
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IDatabaseHelper, ILedgerService
from core.plan_config import PlanConfig, PlanId, SubscriptionStatus
from core.responses import ValidationException

logger = logging.getLogger(__name__)

TX_SUBSCRIPTION_GRANT = "subscription_grant"
TX_PURCHASE = "purchase"
TX_REFUND = "refund"
TX_ADJUSTMENT = "adjustment"

# 소수 단위가 없는 통화 (금액 1 = 통화 1단위)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})


def credits_for_amount(amount_minor: Any, currency: Optional[str] = "usd") -> int:
    """결제 금액(최소 단위)을 크레딧으로 환산 (통화 1단위 = 1크레딧, 내림)"""
    try:
        amount = int(amount_minor or 0)
    except (TypeError, ValueError):
        return 0
    if amount <= 0:
        return 0
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return amount
    return amount // 100


def _refunded_credits(entry: Dict[str, Any]) -> int:
    metadata = entry.get("metadata") or {}
    if metadata.get("refunded_credits") is not None:
        return int(metadata["refunded_credits"])
    return -int(entry.get("amount") or 0)


class LedgerService(BaseService, ILedgerService):
    """크레딧 원장 서비스"""

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        plan_config: Optional[PlanConfig] = None,
        clock=None,
    ):
        super().__init__(db_helper, clock=clock)
        self.plan_config = plan_config or PlanConfig()

    async def _ensure_wallet(self, user_id: str) -> Optional[Dict[str, Any]]:
        """지갑 조회, 없으면 잔액 0 으로 생성"""
        wallet = await self.db_helper.get_wallet(user_id)
        if wallet:
            return wallet
        self.logger.info("지갑이 없어 새로 생성합니다: user_id=%s", user_id)
        return await self.db_helper.create_wallet(user_id)

    async def _append_entry(
        self,
        user_id: str,
        amount: int,
        tx_type: str,
        description: str,
        credits_before: int,
        *,
        payment_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """거래 내역 추가 (credits_after = credits_before + amount)"""
        entry = {
            "user_id": user_id,
            "amount": amount,
            "type": tx_type,
            "description": description,
            "credits_before": credits_before,
            "credits_after": credits_before + amount,
            "stripe_payment_id": payment_id,
            "stripe_subscription_id": subscription_id,
            "metadata": metadata or {},
            "created_at": self.now_iso(),
        }
        result = await self.db_helper.insert_transaction(entry)
        if result is None:
            # 잔액은 이미 반영됨. 수동 대사 대상
            self.logger.error(
                "거래 내역 기록 실패 (잔액 반영됨): user_id=%s type=%s amount=%s before=%s",
                user_id,
                tx_type,
                amount,
                credits_before,
            )
        return result

    async def _apply_balance_change(
        self,
        user_id: str,
        amount: int,
        tx_type: str,
        description: str,
        *,
        wallet_fields: Optional[Dict[str, Any]] = None,
        payment_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """잔액 읽기 → 잔액 쓰기 → 거래 내역 추가"""
        wallet = await self._ensure_wallet(user_id)
        if not wallet:
            self.logger.error("지갑을 준비하지 못해 잔액 변경 불가: user_id=%s", user_id)
            return None

        credits_before = int(wallet.get("credits_balance") or 0)
        credits_after = credits_before + amount
        update = {
            **(wallet_fields or {}),
            "credits_balance": credits_after,
            "updated_at": self.now_iso(),
        }
        updated = await self.db_helper.update_wallet(user_id, update)
        if updated is None:
            self.logger.error("지갑 잔액 업데이트 실패: user_id=%s amount=%s", user_id, amount)
            return None

        entry = await self._append_entry(
            user_id,
            amount,
            tx_type,
            description,
            credits_before,
            payment_id=payment_id,
            subscription_id=subscription_id,
            metadata=metadata,
        )
        return {
            "credits_before": credits_before,
            "credits_after": credits_after,
            "amount": amount,
            "transaction": entry,
        }

    async def apply_plan_change(
        self,
        user_id: str,
        plan: PlanId,
        status: SubscriptionStatus,
        is_new_subscription: bool,
        *,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        cancel_at_period_end: bool = False,
    ) -> bool:
        """플랜 변경 반영 및 필요 시 월간 크레딧 지급"""
        plan = PlanId(plan)
        status = SubscriptionStatus(status)
        now = self.now_iso()

        settings_data: Dict[str, Any] = {
            "subscription_plan": plan.legacy_name,
            "subscription_status": status.value,
            "cancel_at_period_end": bool(cancel_at_period_end),
            "last_payment_date": now,
            # 구독 이벤트마다 사용량 카운터 초기화
            "deployments_this_month": 0,
            "github_pushes_this_month": 0,
            "updated_at": now,
        }
        if customer_id:
            settings_data["stripe_customer_id"] = customer_id
        if subscription_id:
            settings_data["stripe_subscription_id"] = subscription_id

        saved = await self.db_helper.upsert_account_settings(user_id, settings_data)
        if saved is None:
            self.logger.error("user_settings 반영 실패: user_id=%s plan=%s", user_id, plan.value)
            return False

        wallet_fields: Dict[str, Any] = {
            "current_plan": plan.value,
            "subscription_status": status.wallet_value,
        }
        if customer_id:
            wallet_fields["stripe_customer_id"] = customer_id
        if subscription_id:
            wallet_fields["stripe_subscription_id"] = subscription_id

        should_grant = is_new_subscription or status is SubscriptionStatus.ACTIVE
        if not should_grant:
            wallet = await self._ensure_wallet(user_id)
            if wallet:
                wallet = await self.db_helper.update_wallet(user_id, {**wallet_fields, "updated_at": now})
            if wallet is None:
                self.logger.error("지갑 동기화 실패 (user_settings 는 반영됨): user_id=%s", user_id)
            return True

        allotment = self.plan_config.get_monthly_credits(plan)
        result = await self._apply_balance_change(
            user_id,
            allotment,
            TX_SUBSCRIPTION_GRANT,
            f"{plan.value} 플랜 월간 크레딧 지급 ({allotment} credits)",
            wallet_fields={**wallet_fields, "last_reset_date": now},
            subscription_id=subscription_id,
            metadata={
                "plan": plan.value,
                "status": status.value,
                "is_new_subscription": bool(is_new_subscription),
            },
        )
        if result is None:
            self.logger.error("지갑 동기화 실패 (user_settings 는 반영됨): user_id=%s", user_id)
            return True

        self.logger.info(
            "플랜 변경 반영: user_id=%s plan=%s status=%s granted=%s balance=%s",
            user_id,
            plan.value,
            status.value,
            allotment,
            result["credits_after"],
        )
        return True

    async def cancel_subscription(self, user_id: str, *, subscription_id: Optional[str] = None) -> bool:
        """구독 해지 - 남은 크레딧은 유지"""
        now = self.now_iso()
        updated = await self.db_helper.update_account_settings(user_id, {
            "subscription_plan": PlanId.FREE.legacy_name,
            "subscription_status": SubscriptionStatus.CANCELED.value,
            "stripe_subscription_id": None,
            "cancel_at_period_end": False,
            "deployments_this_month": 0,
            "github_pushes_this_month": 0,
            "updated_at": now,
        })
        if not updated:
            self.logger.error("구독 해지 반영 실패: user_id=%s subscription_id=%s", user_id, subscription_id)
            return False

        wallet = await self.db_helper.update_wallet(user_id, {
            "current_plan": PlanId.FREE.value,
            "subscription_status": SubscriptionStatus.CANCELED.wallet_value,
            "stripe_subscription_id": None,
            "updated_at": now,
        })
        if wallet is None:
            self.logger.error("지갑 해지 동기화 실패 (user_settings 는 반영됨): user_id=%s", user_id)

        self.logger.info("구독 해지 반영 (잔액 유지): user_id=%s", user_id)
        return True

    async def mark_past_due(self, user_id: str) -> bool:
        """결제 실패 - 상태만 past_due 로 변경"""
        now = self.now_iso()
        updated = await self.db_helper.update_account_settings(user_id, {
            "subscription_status": SubscriptionStatus.PAST_DUE.value,
            "updated_at": now,
        })
        if not updated:
            self.logger.error("past_due 반영 실패: user_id=%s", user_id)
            return False

        wallet = await self.db_helper.update_wallet(user_id, {
            "subscription_status": SubscriptionStatus.PAST_DUE.wallet_value,
            "updated_at": now,
        })
        if wallet is None:
            self.logger.error("지갑 past_due 동기화 실패 (user_settings 는 반영됨): user_id=%s", user_id)
        return True

    async def apply_renewal(
        self,
        user_id: str,
        plan: PlanId,
        *,
        subscription_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> bool:
        """정기 갱신 - 월간 크레딧 지급 및 월 사용량 초기화"""
        plan = PlanId(plan)
        now = self.now_iso()

        updated = await self.db_helper.update_account_settings(user_id, {
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "last_payment_date": now,
            "deployments_this_month": 0,
            "github_pushes_this_month": 0,
            "updated_at": now,
        })
        if not updated:
            self.logger.error("갱신 반영 실패: user_id=%s invoice_id=%s", user_id, invoice_id)
            return False

        allotment = self.plan_config.get_monthly_credits(plan)
        result = await self._apply_balance_change(
            user_id,
            allotment,
            TX_SUBSCRIPTION_GRANT,
            f"{plan.value} 플랜 정기 갱신 크레딧 ({allotment} credits)",
            wallet_fields={
                "current_plan": plan.value,
                "subscription_status": SubscriptionStatus.ACTIVE.wallet_value,
                "credits_used_this_month": 0,
                "last_reset_date": now,
            },
            payment_id=invoice_id,
            subscription_id=subscription_id,
            metadata={"plan": plan.value, "reason": "renewal"},
        )
        if result is None:
            self.logger.error("갱신 크레딧 지급 실패 (user_settings 는 반영됨): user_id=%s", user_id)
            return True

        self.logger.info(
            "정기 갱신 반영: user_id=%s plan=%s granted=%s balance=%s",
            user_id,
            plan.value,
            allotment,
            result["credits_after"],
        )
        return True

    async def purchase_credits(
        self,
        user_id: str,
        credits: int,
        *,
        payment_id: Optional[str] = None,
        amount_paid: Optional[int] = None,
        currency: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """크레딧 구매 반영 (같은 결제 참조는 한 번만)"""
        if credits <= 0:
            self.logger.warning("구매 크레딧이 0 이하라 건너뜀: user_id=%s payment_id=%s", user_id, payment_id)
            return None

        if payment_id:
            existing = await self.db_helper.find_transaction_by_payment(payment_id, TX_PURCHASE)
            if existing:
                self.logger.info("이미 반영된 크레딧 구매: user_id=%s payment_id=%s", user_id, payment_id)
                return {"duplicate": True, "transaction": existing}

        result = await self._apply_balance_change(
            user_id,
            credits,
            TX_PURCHASE,
            f"크레딧 {credits}개 구매",
            payment_id=payment_id,
            metadata={
                "amount_paid": amount_paid,
                "currency": currency,
                "source": source,
            },
        )
        if result is None:
            raise RuntimeError(f"크레딧 구매 반영 실패: user_id={user_id}")

        self.logger.info(
            "크레딧 구매 반영: user_id=%s credits=%s balance=%s",
            user_id,
            credits,
            result["credits_after"],
        )
        return result

    async def refund_credits(
        self,
        user_id: str,
        payment_id: str,
        *,
        refund_id: Optional[str] = None,
        amount_refunded: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """구매 환불 - 누적 환불 금액만큼, 현재 잔액을 넘지 않는 범위에서 차감

        amount_refunded 는 결제 기준 누적 환불 금액(최소 단위)이며 없으면 전액 환불로 본다.
        환불 거래 metadata.refunded_credits 에 반영된 누적 환불 크레딧을 남겨
        같은 환불이 다시 와도 추가 차감하지 않는다.
        """
        purchase = await self.db_helper.find_transaction_by_payment(payment_id, TX_PURCHASE, user_id)
        if not purchase:
            return None

        purchased = int(purchase.get("amount") or 0)
        if amount_refunded is None:
            target = purchased
        else:
            purchase_currency = (purchase.get("metadata") or {}).get("currency")
            target = min(credits_for_amount(amount_refunded, currency or purchase_currency), purchased)

        previous = await self.db_helper.list_transactions_by_payment(payment_id, TX_REFUND, user_id)
        covered = max((_refunded_credits(entry) for entry in previous), default=0)
        seen_refund = refund_id and any((e.get("metadata") or {}).get("refund_id") == refund_id for e in previous)
        if previous and (seen_refund or target <= covered):
            self.logger.info("이미 반영된 환불: user_id=%s payment_id=%s refund_id=%s", user_id, payment_id, refund_id)
            return {"duplicate": True, "transaction": previous[-1]}

        wallet = await self.db_helper.get_wallet(user_id)
        balance = int((wallet or {}).get("credits_balance") or 0)
        debit = min(target - covered, balance)
        if debit <= 0:
            self.logger.warning("차감할 잔액이 없어 환불 차감 생략: user_id=%s payment_id=%s", user_id, payment_id)
            return {"credits_before": balance, "credits_after": balance, "amount": 0, "transaction": None}

        result = await self._apply_balance_change(
            user_id,
            -debit,
            TX_REFUND,
            f"크레딧 구매 환불 ({debit} credits)",
            payment_id=payment_id,
            metadata={
                "refund_id": refund_id,
                "purchased": purchased,
                "amount_refunded": amount_refunded,
                "refunded_credits": target,
            },
        )
        if result is None:
            raise RuntimeError(f"환불 반영 실패: user_id={user_id}")
        return result

    async def record_payment(self, user_id: str, paid_at: Optional[str] = None) -> bool:
        """마지막 결제 시각만 기록 (updated_at 은 건드리지 않음)"""
        return await self.db_helper.update_account_settings(user_id, {
            "last_payment_date": paid_at or self.now_iso(),
        })

    async def grant_credits(
        self,
        user_id: str,
        amount: int,
        reason: str,
        *,
        admin_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """관리자 수동 크레딧 조정"""
        self.validate_required_fields({"user_id": user_id, "reason": reason}, ["user_id", "reason"])
        if not amount:
            raise ValidationException("조정 크레딧은 0이 될 수 없습니다")

        wallet = await self._ensure_wallet(user_id)
        balance = int((wallet or {}).get("credits_balance") or 0)
        if balance + amount < 0:
            raise ValidationException("잔액보다 많은 크레딧을 차감할 수 없습니다")

        result = await self._apply_balance_change(
            user_id,
            amount,
            TX_ADJUSTMENT,
            reason,
            metadata={"admin_id": admin_id},
        )
        if result is None:
            raise RuntimeError(f"크레딧 조정 실패: user_id={user_id}")
        return result
