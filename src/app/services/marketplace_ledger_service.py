"""
마켓플레이스 템플릿 판매 수익 원장
marketplace_transactions 기록이 1차 쓰기, marketplace_wallet 갱신이 2차 쓰기
"""
import logging
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IDatabaseHelper

logger = logging.getLogger(__name__)

TEMPLATE_PURCHASE = "template_purchase"


def _to_amount(value: Any) -> Optional[float]:
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return None


def is_template_purchase(metadata: Any) -> bool:
    return isinstance(metadata, dict) and metadata.get("type") == TEMPLATE_PURCHASE


class MarketplaceLedgerService(BaseService):
    """크리에이터 수익 (달러 단위) 기록"""

    def __init__(self, db_helper: IDatabaseHelper, platform_commission: float = 0.25, clock=None):
        super().__init__(db_helper, clock=clock)
        self.platform_commission = platform_commission

    def _split_amounts(self, metadata: Dict[str, Any], amount_total: Any) -> Dict[str, float]:
        """판매가, 플랫폼 수수료, 크리에이터 수익 계산"""
        price = _to_amount(metadata.get("price"))
        if price is None:
            price = round(int(amount_total or 0) / 100, 2)

        platform_fee = _to_amount(metadata.get("platform_fee"))
        if platform_fee is None:
            platform_fee = round(price * self.platform_commission, 2)

        creator_earnings = _to_amount(metadata.get("creator_earnings"))
        if creator_earnings is None:
            creator_earnings = round(price - platform_fee, 2)

        return {
            "price": price,
            "platform_fee": platform_fee,
            "creator_earnings": max(creator_earnings, 0.0),
        }

    async def _adjust_wallet(self, creator_id: str, delta: float) -> None:
        """크리에이터 지갑 잔액 조정 (실패는 로그만)"""
        wallet = await self.db_helper.get_marketplace_wallet(creator_id)
        if not wallet:
            wallet = await self.db_helper.create_marketplace_wallet(creator_id)
        if not wallet:
            self.logger.error("마켓플레이스 지갑 준비 실패 (거래는 기록됨): creator_id=%s", creator_id)
            return

        balance = float(wallet.get("balance") or 0)
        pending = float(wallet.get("pending_balance") or 0)
        total_earned = float(wallet.get("total_earned") or 0)
        update = {
            "balance": round(balance + delta, 2),
            "pending_balance": round(max(pending + delta, 0.0), 2),
            "updated_at": self.now_iso(),
        }
        if delta > 0:
            update["total_earned"] = round(total_earned + delta, 2)

        if await self.db_helper.update_marketplace_wallet(creator_id, update) is None:
            self.logger.error(
                "마켓플레이스 지갑 갱신 실패 (거래는 기록됨): creator_id=%s delta=%s",
                creator_id,
                delta,
            )

    async def find_sale(self, payment_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return await self.db_helper.find_marketplace_transaction(payment_id, "sale")

    async def record_sale(self, session: Dict[str, Any]) -> bool:
        """템플릿 판매 기록"""
        metadata = session.get("metadata") or {}
        creator_id = metadata.get("creator_id")
        if not creator_id:
            raise ValueError("템플릿 구매 메타데이터에 creator_id 가 없습니다")

        payment_id = session.get("payment_intent") or session.get("id")
        if await self.find_sale(payment_id):
            self.logger.info("이미 기록된 템플릿 판매: payment_id=%s", payment_id)
            return True

        amounts = self._split_amounts(metadata, session.get("amount_total"))
        entry = {
            "creator_id": creator_id,
            "buyer_id": metadata.get("buyer_id") or session.get("client_reference_id"),
            "template_id": metadata.get("template_id"),
            "amount": amounts["creator_earnings"],
            "type": "sale",
            "stripe_payment_id": payment_id,
            "metadata": {**amounts, "checkout_session_id": session.get("id")},
            "created_at": self.now_iso(),
        }
        if await self.db_helper.insert_marketplace_transaction(entry) is None:
            return False

        await self._adjust_wallet(creator_id, amounts["creator_earnings"])
        self.logger.info(
            "템플릿 판매 기록: creator_id=%s template_id=%s earnings=%s",
            creator_id,
            entry["template_id"],
            amounts["creator_earnings"],
        )
        return True

    async def record_refund(self, charge: Dict[str, Any]) -> bool:
        """템플릿 판매 환불 - 판매 시 적립된 수익만큼 차감"""
        metadata = charge.get("metadata") or {}
        payment_id = charge.get("payment_intent") or charge.get("id")
        sale = await self.find_sale(payment_id)
        if not sale:
            self.logger.warning("환불 대상 템플릿 판매를 찾지 못함: payment_id=%s", payment_id)
            return False

        if await self.db_helper.find_marketplace_transaction(payment_id, "refund"):
            self.logger.info("이미 기록된 템플릿 환불: payment_id=%s", payment_id)
            return True

        earnings = float(sale.get("amount") or 0)
        creator_id = sale.get("creator_id") or metadata.get("creator_id")
        entry = {
            "creator_id": creator_id,
            "buyer_id": sale.get("buyer_id"),
            "template_id": sale.get("template_id"),
            "amount": -earnings,
            "type": "refund",
            "stripe_payment_id": payment_id,
            "metadata": {"charge_id": charge.get("id"), "amount_refunded": charge.get("amount_refunded")},
            "created_at": self.now_iso(),
        }
        if await self.db_helper.insert_marketplace_transaction(entry) is None:
            return False

        await self._adjust_wallet(creator_id, -earnings)
        return True
