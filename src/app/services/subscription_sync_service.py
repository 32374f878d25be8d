"""
구독 정보 복구 서비스
웹훅 누락 등으로 비어 있는 구독 ID/플랜을 Stripe 조회 결과로 다시 맞춘다.
크레딧은 지급하지 않는다.
"""
import logging
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IDatabaseHelper, IStripeGateway
from core.responses import (
    AuthorizationException,
    BusinessException,
    ExternalServiceException,
    NotFoundException,
    ValidationException,
)
from services.plan_resolver import PlanResolver, normalize_subscription_status
from services.stripe_gateway import StripeAPIError

logger = logging.getLogger(__name__)


class SubscriptionSyncService(BaseService):
    """Stripe 구독 → user_settings / wallet 동기화"""

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        gateway: IStripeGateway,
        plan_resolver: PlanResolver,
        clock=None,
    ):
        super().__init__(db_helper, clock=clock)
        self.gateway = gateway
        self.plan_resolver = plan_resolver

    async def sync_subscription(
        self,
        user_id: str,
        customer_id: Optional[str] = None,
        *,
        allow_any_customer: bool = False,
    ) -> Dict[str, Any]:
        """사용자의 Stripe 구독을 조회해 계정 레코드에 반영

        allow_any_customer 가 아니면 customer_id 는 계정에 저장된 Stripe 고객 ID 와 같아야 한다.
        """
        return await self.handle_operation(
            "구독 정보 동기화",
            self._sync_subscription_internal,
            user_id, customer_id, allow_any_customer
        )

    async def _sync_subscription_internal(
        self,
        user_id: str,
        customer_id: Optional[str],
        allow_any_customer: bool,
    ) -> Dict[str, Any]:
        self.validate_required_fields({"user_id": user_id}, ["user_id"])

        account = await self.db_helper.get_account_settings(user_id) or {}
        stored_customer_id = account.get("stripe_customer_id")
        if customer_id and not allow_any_customer and customer_id != stored_customer_id:
            self.logger.warning(
                "계정과 다른 Stripe 고객 ID 로 복구 시도 거부: user_id=%s customer_id=%s", user_id, customer_id
            )
            raise AuthorizationException("본인 계정의 Stripe 고객 ID 만 사용할 수 있습니다")
        customer_id = customer_id or stored_customer_id
        if not customer_id:
            raise ValidationException("Stripe 고객 ID를 찾을 수 없습니다")

        try:
            subscriptions = await self.gateway.list_subscriptions(customer_id, limit=5)
        except StripeAPIError as e:
            raise ExternalServiceException("Stripe", str(e)) from e
        if not subscriptions:
            raise NotFoundException("Stripe 구독을 찾을 수 없습니다")

        subscription = next((s for s in subscriptions if s.get("status") == "active"), subscriptions[0])
        plan = self.plan_resolver.resolve(subscription)
        status = normalize_subscription_status(subscription.get("status"))
        now = self.now_iso()

        updated = await self.db_helper.update_account_settings(user_id, {
            "stripe_subscription_id": subscription.get("id"),
            "subscription_status": status.value,
            "subscription_plan": plan.legacy_name,
            "last_payment_date": now,
        })
        if not updated:
            raise BusinessException("user_settings 업데이트에 실패했습니다", "SYNC_WRITE_FAILED", 500)

        wallet = await self.db_helper.update_wallet(user_id, {
            "stripe_subscription_id": subscription.get("id"),
            "stripe_customer_id": customer_id,
            "current_plan": plan.value,
            "subscription_status": status.wallet_value,
            "updated_at": now,
        })
        if wallet is None:
            self.logger.error("지갑 구독 동기화 실패 (user_settings 는 반영됨): user_id=%s", user_id)

        self.logger.info(
            "구독 정보 동기화: user_id=%s subscription=%s plan=%s status=%s",
            user_id,
            subscription.get("id"),
            plan.value,
            status.value,
        )
        return {
            "subscription_id": subscription.get("id"),
            "status": subscription.get("status"),
            "plan": plan.value,
            "customer_id": customer_id,
            "wallet_synced": wallet is not None,
        }
