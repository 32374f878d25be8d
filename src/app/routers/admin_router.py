"""
관리자 전용 API 라우터
웹훅 처리 로그와 크레딧 원장을 조회하고 수동 조정한다.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.responses import success_response
from schemas.admin import CreditAdjustRequest
from services.auth_service import is_admin

# 의존성 주입 대상 서비스들
auth_service = None  # type: ignore
ledger_service = None  # type: ignore
db_helper = None  # type: ignore

# HTTP Bearer 인증 스키마
security = HTTPBearer(auto_error=False)


def set_dependencies(auth_svc, ledger_svc=None, db_helper_svc=None) -> None:
    """main.py에서 호출하여 서비스 인스턴스를 주입한다."""
    global auth_service, ledger_service, db_helper
    auth_service = auth_svc
    ledger_service = ledger_svc
    db_helper = db_helper_svc


async def authorize_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
):
    """Supabase JWT의 app_metadata를 확인해 관리자 권한을 검증한다."""
    if auth_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="관리자 인증 서비스가 초기화되지 않았습니다.",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="인증 토큰이 필요합니다.",
        )

    user = await auth_service.verify_auth(credentials)
    if not is_admin(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="관리자 권한이 필요합니다.",
        )

    return user


async def require_services():
    if auth_service is None or ledger_service is None or db_helper is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="관리자 서비스 의존성이 초기화되지 않았습니다.",
        )


async def get_current_admin(user=Depends(authorize_admin)):
    """엔드포인트에서 관리자 정보를 활용할 수 있도록 반환."""
    await require_services()
    return user


router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
)


def _ensure_positive_page(page: int) -> int:
    return page if page > 0 else 1


def _ensure_page_size(limit: int) -> int:
    if limit <= 0:
        return 20
    return min(limit, 100)


@router.get("/health")
async def admin_health_check(admin=Depends(get_current_admin)):
    """관리자 라우터용 헬스 체크 엔드포인트."""
    return success_response(data={"status": "ok"})


@router.get("/webhook-logs")
async def list_webhook_logs(
    status: str = Query("all", description="처리 상태 필터 (success/failed/all)"),
    event_type: Optional[str] = Query(None, description="이벤트 유형 필터"),
    user_id: Optional[str] = Query(None, description="사용자 ID 필터"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(get_current_admin),
):
    result = await db_helper.list_webhook_logs(
        status=status.lower() if status else "all",
        event_type=event_type,
        user_id=user_id,
        page=_ensure_positive_page(page),
        page_size=_ensure_page_size(limit),
    )
    return success_response(data=result)


@router.get("/wallets/{user_id}")
async def get_wallet_detail(
    user_id: str = Path(..., description="조회할 사용자 ID"),
    limit: int = Query(20, ge=1, le=100, description="최근 거래 내역 개수"),
    admin=Depends(get_current_admin),
):
    wallet = await db_helper.get_wallet(user_id)
    account = await db_helper.get_account_settings(user_id)
    if not wallet and not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="결제 계정을 찾을 수 없습니다.")

    plan_info = None
    if wallet and wallet.get("current_plan"):
        try:
            plan_info = ledger_service.plan_config.get_plan_info(wallet["current_plan"])
        except ValueError:
            plan_info = None

    transactions = await db_helper.get_transactions(user_id, limit=_ensure_page_size(limit))
    return success_response(data={
        "wallet": wallet,
        "account": account,
        "plan": plan_info,
        "transactions": transactions,
    })


@router.post("/wallets/{user_id}/credits")
async def adjust_credits(
    user_id: str,
    request: CreditAdjustRequest,
    admin=Depends(get_current_admin),
):
    result = await ledger_service.grant_credits(
        user_id,
        request.amount,
        request.reason,
        admin_id=getattr(admin, "id", None),
    )
    return success_response(data=result, message="크레딧이 조정되었습니다.")
