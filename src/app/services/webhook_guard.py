"""웹훅 중복/연속 처리 억제

정확히 한 번 처리를 보장하지 않는 시간 창 기반 휴리스틱이다.
1. 같은 이벤트 ID 의 성공 로그가 이벤트 창(기본 5분) 안에 있으면 억제
2. 계정(user_settings.updated_at)이 계정 창(기본 30초) 안에 갱신되었으면 억제
3. 조회가 실패하면 처리를 허용
"""
import logging
from datetime import timedelta
from typing import Optional

from core.base_service import BaseService
from database_helper import DatabaseHelper

logger = logging.getLogger(__name__)


class DuplicateGuard(BaseService):

    def __init__(
        self,
        db_helper,
        *,
        event_window_seconds: int = 300,
        account_window_seconds: int = 30,
        clock=None,
    ):
        super().__init__(db_helper, clock=clock)
        self.event_window = timedelta(seconds=event_window_seconds)
        self.account_window = timedelta(seconds=account_window_seconds)

    def _within(self, value, window: timedelta) -> bool:
        timestamp = DatabaseHelper._parse_iso_datetime(value)
        if timestamp is None:
            return False
        return self.clock() - timestamp < window

    async def should_process(self, user_id: Optional[str], event_id: Optional[str]) -> bool:
        try:
            if event_id:
                recent_log = await self.db_helper.get_latest_webhook_log(event_id, status="success")
                if recent_log and self._within(recent_log.get("processed_at"), self.event_window):
                    logger.info("[STRIPE] 중복 이벤트 건너뜀: event_id=%s user_id=%s", event_id, user_id)
                    return False

            if user_id:
                account = await self.db_helper.get_account_settings(user_id)
                if account and self._within(account.get("updated_at"), self.account_window):
                    logger.info(
                        "[STRIPE] 연속 업데이트 건너뜀: user_id=%s last_update=%s",
                        user_id,
                        account.get("updated_at"),
                    )
                    return False

            return True
        except Exception as e:
            logger.error("[STRIPE] 중복 여부 확인 실패, 처리 허용: user_id=%s error=%s", user_id, e)
            return True
