"""
결제 계정 관련 API 라우터
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.responses import success_response
from schemas.billing import FixSubscriptionRequest, FixSubscriptionResult
from services.auth_service import is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["billing"])
security = HTTPBearer(auto_error=False)

# main.py 에서 주입
auth_service = None  # type: ignore
subscription_sync_service = None  # type: ignore


def set_dependencies(auth_svc, sync_svc) -> None:
    """의존성 설정 (main.py에서 호출)"""
    global auth_service, subscription_sync_service
    auth_service = auth_svc
    subscription_sync_service = sync_svc


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """현재 사용자 정보를 가져오는 의존성"""
    if auth_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="인증 서비스가 초기화되지 않았습니다.",
        )
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return await auth_service.verify_auth(credentials)


def get_subscription_sync_service():
    if subscription_sync_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="구독 동기화 서비스가 초기화되지 않았습니다.",
        )
    return subscription_sync_service


@router.post("/fix-subscription")
async def fix_subscription(
    request: FixSubscriptionRequest,
    user=Depends(get_current_user),
    sync_service=Depends(get_subscription_sync_service),
):
    """Stripe 에서 구독을 조회해 누락된 구독 ID/플랜을 복구"""
    target_user_id = request.userId or user.id
    if target_user_id != user.id and not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="다른 사용자의 구독은 복구할 수 없습니다.")

    result = await sync_service.sync_subscription(
        target_user_id,
        request.customerId,
        allow_any_customer=is_admin(user),
    )
    if not result["success"]:
        raise HTTPException(status_code=result.get("status_code", 500), detail=result["error"])

    data = FixSubscriptionResult(**result["data"])
    return success_response(data=data.model_dump(), message="구독 정보가 복구되었습니다")
