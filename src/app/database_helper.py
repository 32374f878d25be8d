"""
Supabase 테이블 CRUD 작업을 위한 헬퍼 모듈

user_settings / wallet / transactions / webhook_logs 와
marketplace_wallet / marketplace_transactions 테이블을 다룬다.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from supabase import Client
import logging

from core.interfaces import IDatabaseHelper

logger = logging.getLogger(__name__)


class DatabaseHelper(IDatabaseHelper):
    def __init__(self, supabase_client: Client, admin_client: Client = None):
        self.supabase = supabase_client
        self.admin_client = admin_client or supabase_client

    def _get_client(self, use_admin: bool = False):
        """적절한 클라이언트 반환 - 웹훅 처리는 RLS 우회를 위해 admin client 사용"""
        return self.admin_client if use_admin else self.supabase

    @staticmethod
    def _parse_iso_datetime(value: Any) -> Optional[datetime]:
        """ISO 포맷 문자열을 datetime 객체로 변환 (Z 접두 처리 포함)"""
        if not value:
            return None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            except ValueError:
                return None
        else:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def _first(result) -> Optional[Dict[str, Any]]:
        data = getattr(result, 'data', None)
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    # user_settings (레거시 계정 결제 레코드)
    async def get_account_settings(self, user_id: str) -> Optional[Dict[str, Any]]:
        """사용자 결제 설정 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('user_settings').select('*').eq('user_id', user_id).limit(1).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"user_settings 조회 실패: user_id={user_id}, error={e}")
            return None

    async def find_user_id_by_customer(self, customer_id: str) -> Optional[str]:
        """Stripe 고객 ID로 사용자 ID 조회 (user_settings → wallet 순)"""
        if not customer_id:
            return None
        try:
            client = self._get_client(use_admin=True)
            for table in ('user_settings', 'wallet'):
                result = (
                    client.table(table)
                    .select('user_id')
                    .eq('stripe_customer_id', customer_id)
                    .limit(1)
                    .execute()
                )
                row = self._first(result)
                if row and row.get('user_id'):
                    return row['user_id']
            return None
        except Exception as e:
            logger.error(f"고객 ID로 사용자 조회 실패: customer_id={customer_id}, error={e}")
            return None

    async def upsert_account_settings(self, user_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """user_settings upsert (user_id 기준)"""
        try:
            client = self._get_client(use_admin=True)
            payload = {**data, 'user_id': user_id}
            result = client.table('user_settings').upsert(payload, on_conflict='user_id').execute()
            return self._first(result) or payload
        except Exception as e:
            logger.error(f"user_settings upsert 실패: user_id={user_id}, error={e}")
            return None

    async def update_account_settings(self, user_id: str, data: Dict[str, Any]) -> bool:
        """user_settings 부분 업데이트"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('user_settings').update(data).eq('user_id', user_id).execute()
            if result.data:
                return True
            logger.warning(f"user_settings 업데이트 대상 없음: user_id={user_id}")
            return False
        except Exception as e:
            logger.error(f"user_settings 업데이트 실패: user_id={user_id}, error={e}")
            return False

    # wallet (크레딧 잔액)
    async def get_wallet(self, user_id: str) -> Optional[Dict[str, Any]]:
        """지갑 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('wallet').select('*').eq('user_id', user_id).limit(1).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"지갑 조회 실패: user_id={user_id}, error={e}")
            return None

    async def create_wallet(self, user_id: str, data: Dict[str, Any] = None) -> Optional[Dict[str, Any]]:
        """지갑 생성 (잔액 0, free 플랜)"""
        try:
            wallet_data = {
                'user_id': user_id,
                'credits_balance': 0,
                'credits_used_this_month': 0,
                'credits_used_total': 0,
                'current_plan': 'free',
                'subscription_status': 'inactive',
                **(data or {}),
            }
            client = self._get_client(use_admin=True)
            result = client.table('wallet').insert(wallet_data).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"지갑 생성 실패: user_id={user_id}, error={e}")
            return None

    async def update_wallet(self, user_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """지갑 업데이트 후 갱신된 행 반환"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('wallet').update(data).eq('user_id', user_id).execute()
            row = self._first(result)
            if row is None:
                logger.warning(f"지갑 업데이트 대상 없음: user_id={user_id}")
            return row
        except Exception as e:
            logger.error(f"지갑 업데이트 실패: user_id={user_id}, error={e}")
            return None

    # transactions (불변 원장)
    async def insert_transaction(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """거래 내역 추가"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('transactions').insert(entry).execute()
            return self._first(result) or entry
        except Exception as e:
            logger.error(f"거래 내역 기록 실패: user_id={entry.get('user_id')}, error={e}")
            return None

    async def find_transaction_by_payment(
        self,
        payment_id: str,
        tx_type: str,
        user_id: str | None = None,
    ) -> Optional[Dict[str, Any]]:
        """결제 참조로 거래 내역 조회"""
        if not payment_id:
            return None
        try:
            client = self._get_client(use_admin=True)
            query = (
                client.table('transactions')
                .select('*')
                .eq('stripe_payment_id', payment_id)
                .eq('type', tx_type)
            )
            if user_id:
                query = query.eq('user_id', user_id)
            result = query.limit(1).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"결제 참조 거래 조회 실패: payment_id={payment_id}, error={e}")
            return None

    async def list_transactions_by_payment(
        self,
        payment_id: str,
        tx_type: str,
        user_id: str | None = None,
    ) -> List[Dict[str, Any]]:
        """결제 참조의 같은 유형 거래 전체 조회"""
        if not payment_id:
            return []
        try:
            client = self._get_client(use_admin=True)
            query = (
                client.table('transactions')
                .select('*')
                .eq('stripe_payment_id', payment_id)
                .eq('type', tx_type)
            )
            if user_id:
                query = query.eq('user_id', user_id)
            result = query.execute()
            return result.data or []
        except Exception as e:
            logger.error(f"결제 참조 거래 목록 조회 실패: payment_id={payment_id}, error={e}")
            return []

    async def get_transactions(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """사용자 거래 내역 조회 (최신순)"""
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table('transactions')
                .select('*')
                .eq('user_id', user_id)
                .order('created_at', desc=True)
                .limit(limit)
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"거래 내역 조회 실패: user_id={user_id}, error={e}")
            return []

    # webhook_logs (감사 및 중복 판별)
    async def get_latest_webhook_log(self, event_id: str, status: str = 'success') -> Optional[Dict[str, Any]]:
        """이벤트 ID 기준 최신 웹훅 로그 조회"""
        if not event_id:
            return None
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table('webhook_logs')
                .select('processed_at')
                .eq('event_id', event_id)
                .eq('status', status)
                .order('processed_at', desc=True)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error(f"웹훅 로그 조회 실패: event_id={event_id}, error={e}")
            raise

    async def insert_webhook_log(self, entry: Dict[str, Any]) -> bool:
        """웹훅 처리 결과 기록"""
        client = self._get_client(use_admin=True)
        result = client.table('webhook_logs').insert(entry).execute()
        return bool(result.data)

    async def list_webhook_logs(
        self,
        *,
        status: str = 'all',
        event_type: str | None = None,
        user_id: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """관리자용 웹훅 로그 목록"""
        page = max(page, 1)
        page_size = max(1, min(page_size, 100))
        offset = (page - 1) * page_size
        try:
            client = self._get_client(use_admin=True)
            query = client.table('webhook_logs').select('*')
            if status and status != 'all':
                query = query.eq('status', status)
            if event_type:
                query = query.eq('event_type', event_type)
            if user_id:
                query = query.eq('user_id', user_id)
            result = (
                query.order('processed_at', desc=True)
                .range(offset, offset + page_size - 1)
                .execute()
            )
            items = result.data or []
        except Exception as e:
            logger.error(f"웹훅 로그 목록 조회 실패: {e}")
            items = []

        return {
            'items': items,
            'page': page,
            'page_size': page_size,
            'has_more': len(items) == page_size,
        }

    # marketplace_wallet / marketplace_transactions (크리에이터 수익)
    async def get_marketplace_wallet(self, creator_id: str) -> Optional[Dict[str, Any]]:
        """크리에이터 마켓플레이스 지갑 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('marketplace_wallet').select('*').eq('creator_id', creator_id).limit(1).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"마켓플레이스 지갑 조회 실패: creator_id={creator_id}, error={e}")
            return None

    async def create_marketplace_wallet(self, creator_id: str) -> Optional[Dict[str, Any]]:
        """크리에이터 마켓플레이스 지갑 생성"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('marketplace_wallet').insert({
                'creator_id': creator_id,
                'balance': 0,
                'pending_balance': 0,
                'available_balance': 0,
                'total_earned': 0,
            }).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"마켓플레이스 지갑 생성 실패: creator_id={creator_id}, error={e}")
            return None

    async def update_marketplace_wallet(self, creator_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """크리에이터 마켓플레이스 지갑 업데이트"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('marketplace_wallet').update(data).eq('creator_id', creator_id).execute()
            return self._first(result)
        except Exception as e:
            logger.error(f"마켓플레이스 지갑 업데이트 실패: creator_id={creator_id}, error={e}")
            return None

    async def insert_marketplace_transaction(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """마켓플레이스 거래 기록"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table('marketplace_transactions').insert(entry).execute()
            return self._first(result) or entry
        except Exception as e:
            logger.error(f"마켓플레이스 거래 기록 실패: creator_id={entry.get('creator_id')}, error={e}")
            return None

    async def find_marketplace_transaction(self, payment_id: str, tx_type: str) -> Optional[Dict[str, Any]]:
        """결제 참조로 마켓플레이스 거래 조회"""
        if not payment_id:
            return None
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table('marketplace_transactions')
                .select('*')
                .eq('stripe_payment_id', payment_id)
                .eq('type', tx_type)
                .limit(1)
                .execute()
            )
            return self._first(result)
        except Exception as e:
            logger.error(f"마켓플레이스 거래 조회 실패: payment_id={payment_id}, error={e}")
            return None
