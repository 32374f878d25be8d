"""
서비스 기본 클래스
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from core.responses import BusinessException
from core.interfaces import IDatabaseHelper

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseService:
    """모든 서비스의 기본 클래스"""

    def __init__(self, db_helper: IDatabaseHelper, clock: Optional[Callable[[], datetime]] = None):
        self.db_helper = db_helper
        self.clock = clock or utc_now
        self.logger = logging.getLogger(self.__class__.__name__)

    def now_iso(self) -> str:
        """현재 시각 (UTC ISO 문자열)"""
        return self.clock().isoformat()

    async def handle_operation(self, operation_name: str, operation_func, *args, **kwargs) -> Dict[str, Any]:
        """공통 작업 처리 래퍼"""
        try:
            result = await operation_func(*args, **kwargs)
            return {"success": True, "data": result}
        except BusinessException as e:
            self.logger.warning(f"{operation_name} 비즈니스 오류: {e.message}")
            return {
                "success": False,
                "error": e.message,
                "error_code": e.error_code,
                "status_code": e.status_code
            }
        except Exception as e:
            self.logger.error(f"{operation_name} 실패: {e}")
            return {
                "success": False,
                "error": str(e),
                "status_code": 500
            }

    def validate_required_fields(self, data: Dict[str, Any], required_fields: list):
        """필수 필드 검증"""
        missing_fields = [field for field in required_fields if not data.get(field)]
        if missing_fields:
            raise BusinessException(
                f"필수 필드가 누락되었습니다: {', '.join(missing_fields)}",
                "MISSING_REQUIRED_FIELDS",
                400
            )
