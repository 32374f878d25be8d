"""
서비스 인터페이스 정의
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List


class IAuthService(ABC):
    """인증 서비스 인터페이스"""

    @abstractmethod
    async def verify_auth(self, credentials) -> Any:
        """토큰 검증"""
        pass


class IDatabaseHelper(ABC):
    """데이터베이스 헬퍼 인터페이스"""

    @abstractmethod
    async def get_account_settings(self, user_id: str) -> Optional[Dict[str, Any]]:
        """user_settings 레코드 조회"""
        pass

    @abstractmethod
    async def find_user_id_by_customer(self, customer_id: str) -> Optional[str]:
        """Stripe 고객 ID로 사용자 ID 조회"""
        pass

    @abstractmethod
    async def upsert_account_settings(self, user_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """user_settings upsert"""
        pass

    @abstractmethod
    async def get_wallet(self, user_id: str) -> Optional[Dict[str, Any]]:
        """wallet 레코드 조회"""
        pass

    @abstractmethod
    async def insert_transaction(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """거래 내역 추가"""
        pass

    @abstractmethod
    async def get_latest_webhook_log(self, event_id: str, status: str = "success") -> Optional[Dict[str, Any]]:
        """이벤트 ID의 최신 웹훅 로그 조회"""
        pass

    @abstractmethod
    async def insert_webhook_log(self, entry: Dict[str, Any]) -> bool:
        """웹훅 로그 기록"""
        pass


class ILedgerService(ABC):
    """크레딧 원장 서비스 인터페이스"""

    @abstractmethod
    async def apply_plan_change(
        self,
        user_id: str,
        plan,
        status,
        is_new_subscription: bool,
        **kwargs,
    ) -> bool:
        """플랜 변경 및 월간 크레딧 지급"""
        pass

    @abstractmethod
    async def cancel_subscription(self, user_id: str, **kwargs) -> bool:
        """구독 해지 (잔액 유지)"""
        pass

    @abstractmethod
    async def mark_past_due(self, user_id: str) -> bool:
        """결제 실패 시 past_due 처리"""
        pass

    @abstractmethod
    async def apply_renewal(self, user_id: str, plan, **kwargs) -> bool:
        """정기 갱신 크레딧 지급"""
        pass

    @abstractmethod
    async def purchase_credits(self, user_id: str, credits: int, **kwargs) -> Optional[Dict[str, Any]]:
        """크레딧 구매 반영"""
        pass


class IStripeGateway(ABC):
    """Stripe API 게이트웨이 인터페이스"""

    @abstractmethod
    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """웹훅 서명 검증 후 이벤트 반환"""
        pass

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """구독 조회"""
        pass

    @abstractmethod
    async def list_subscriptions(self, customer_id: str, status: Optional[str] = None, limit: int = 5) -> List[Dict[str, Any]]:
        """고객 구독 목록 조회"""
        pass

    @abstractmethod
    async def list_checkout_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        """Checkout 세션 라인 아이템 조회"""
        pass
