"""웹훅 처리 결과 기록 (webhook_logs)"""
import logging
from typing import Optional

from core.base_service import BaseService

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


class WebhookEventLogger(BaseService):
    """처리 결과를 기록하며 실패는 프로세스 로그로만 남긴다"""

    async def log(
        self,
        event_type: str,
        event_id: Optional[str],
        status: str,
        error: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        entry = {
            "event_type": event_type,
            "event_id": event_id,
            "user_id": user_id,
            "status": status,
            "error": error,
            "processed_at": self.now_iso(),
        }
        try:
            await self.db_helper.insert_webhook_log(entry)
        except Exception as e:
            logger.error(
                "[STRIPE] 웹훅 로그 기록 실패: event_id=%s type=%s error=%s",
                event_id,
                event_type,
                e,
            )
