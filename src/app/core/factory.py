"""
서비스 팩토리 - 의존성 주입 설정
"""
from typing import Optional
import logging

from supabase import Client, create_client

from core.config import settings as default_settings
from core.container import container
from core.interfaces import IAuthService, IDatabaseHelper, ILedgerService, IStripeGateway
from core.plan_config import PlanConfig
from database_helper import DatabaseHelper
from services.auth_service import AuthService
from services.ledger_service import LedgerService
from services.marketplace_ledger_service import MarketplaceLedgerService
from services.plan_resolver import PlanResolver
from services.stripe_gateway import StripeGateway
from services.stripe_webhook_processor import StripeWebhookProcessor
from services.subscription_sync_service import SubscriptionSyncService
from services.webhook_event_logger import WebhookEventLogger
from services.webhook_guard import DuplicateGuard

logger = logging.getLogger(__name__)


class ServiceFactory:
    """서비스 의존성 등록 및 초기화"""

    @staticmethod
    def configure_dependencies(
        settings=None,
        *,
        supabase_client: Optional[Client] = None,
        supabase_admin: Optional[Client] = None,
        gateway: Optional[IStripeGateway] = None,
    ) -> None:
        """의존성 주입 컨테이너 설정 (테스트에서는 클라이언트를 직접 주입)"""
        settings = settings or default_settings

        # 외부 클라이언트 생성
        if supabase_client is None:
            supabase_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
            if settings.SUPABASE_SERVICE_ROLE_KEY:
                supabase_admin = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
            else:
                logger.warning("SUPABASE_SERVICE_ROLE_KEY가 설정되지 않음 - anon 클라이언트로 원장 기록")

        if gateway is None:
            gateway = StripeGateway.from_settings(settings)
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.warning("[STRIPE] STRIPE_WEBHOOK_SECRET 미설정 - 웹훅 요청은 500으로 거절됩니다")

        container.register_singleton(Client, supabase_client)
        container.register_singleton(IStripeGateway, gateway)

        # DatabaseHelper 싱글톤 등록
        db_helper = DatabaseHelper(supabase_client, supabase_admin)
        container.register_singleton(IDatabaseHelper, db_helper)

        plan_config = PlanConfig(settings.PLAN_MONTHLY_CREDITS)
        plan_resolver = PlanResolver(settings.STRIPE_PRICE_PLAN_MAP)
        container.register_singleton(PlanConfig, plan_config)
        container.register_singleton(PlanResolver, plan_resolver)

        ledger = LedgerService(db_helper, plan_config)
        container.register_singleton(ILedgerService, ledger)

        marketplace = MarketplaceLedgerService(
            db_helper,
            platform_commission=settings.MARKETPLACE_PLATFORM_COMMISSION,
        )
        container.register_singleton(MarketplaceLedgerService, marketplace)

        guard = DuplicateGuard(
            db_helper,
            event_window_seconds=settings.WEBHOOK_EVENT_DEDUP_WINDOW_SECONDS,
            account_window_seconds=settings.WEBHOOK_ACCOUNT_RECENCY_WINDOW_SECONDS,
        )
        container.register_singleton(DuplicateGuard, guard)

        # 생성자 타입 힌트로 자동 해결되는 서비스
        container.register_service(WebhookEventLogger, WebhookEventLogger)
        container.register_service(SubscriptionSyncService, SubscriptionSyncService)

        processor = StripeWebhookProcessor(
            db_helper,
            gateway,
            ledger,
            guard,
            container.get(WebhookEventLogger),
            plan_resolver,
            marketplace=marketplace,
            credits_price_id=settings.STRIPE_PRICE_ID_CREDITS,
        )
        container.register_singleton(StripeWebhookProcessor, processor)

        auth_service = AuthService(supabase_client, db_helper)
        container.register_singleton(IAuthService, auth_service)

    @staticmethod
    def get_auth_service() -> IAuthService:
        """인증 서비스 조회"""
        return container.get(IAuthService)

    @staticmethod
    def get_db_helper() -> IDatabaseHelper:
        """DB 헬퍼 조회"""
        return container.get(IDatabaseHelper)

    @staticmethod
    def get_ledger_service() -> ILedgerService:
        """크레딧 원장 서비스 조회"""
        return container.get(ILedgerService)

    @staticmethod
    def get_webhook_processor() -> StripeWebhookProcessor:
        """Stripe 웹훅 처리기 조회"""
        return container.get(StripeWebhookProcessor)

    @staticmethod
    def get_subscription_sync_service() -> SubscriptionSyncService:
        """구독 복구 서비스 조회"""
        return container.get(SubscriptionSyncService)
