from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import signal
from contextlib import asynccontextmanager
import logging
from datetime import datetime

# Core imports
from core.config import settings
from core.factory import ServiceFactory
from core.middleware import setup_exception_handlers
from core.responses import success_response

# Routers Import
from routers import admin_router, billing_router, stripe_webhook_router

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def signal_handler(signum, frame):
    """SIGINT (Ctrl+C) 및 SIGTERM 처리"""
    import sys
    sys.exit(0)


def wire_dependencies() -> bool:
    """서비스 생성 후 라우터에 주입. Supabase 설정이 없으면 건너뛴다."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        logger.warning("SUPABASE_URL/SUPABASE_ANON_KEY 미설정 - 서비스 의존성을 구성하지 않습니다")
        return False

    ServiceFactory.configure_dependencies(settings)

    auth_service = ServiceFactory.get_auth_service()
    stripe_webhook_router.set_dependencies(ServiceFactory.get_webhook_processor())
    billing_router.set_dependencies(auth_service, ServiceFactory.get_subscription_sync_service())
    admin_router.set_dependencies(
        auth_service,
        ServiceFactory.get_ledger_service(),
        ServiceFactory.get_db_helper(),
    )
    return True


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("[STRIPE] server start: webhook_secret=%s api_key=%s",
                bool(settings.STRIPE_WEBHOOK_SECRET), bool(settings.STRIPE_SECRET_KEY))
    yield
    logger.info("server stop")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Stripe Ledger Server",
        description="Stripe 웹훅으로 구독/크레딧 원장을 맞추는 서버",
        version=APP_VERSION,
        lifespan=lifespan,
        debug=settings.DEBUG
    )

    # 예외 처리 미들웨어 설정
    setup_exception_handlers(app)

    # CORS 미들웨어 추가
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        # DB 헬스체크를 수행하지 않고 정적 상태만 반환
        return success_response(
            data={
                "status": "ok",
                "timestamp": datetime.now().isoformat(),
                "version": APP_VERSION,
                "environment": "development" if settings.DEBUG else "production"
            },
            message="헬스 체크(DB 미검사)"
        )

    # 라우터 등록
    app.include_router(stripe_webhook_router.router)  # Stripe 웹훅
    app.include_router(billing_router.router)  # 구독 복구
    app.include_router(admin_router.router)  # 관리자 API
    return app


wire_dependencies()
app = create_app()

if __name__ == "__main__":
    # 메인 스레드에서만 신호 핸들러 등록
    try:
        import threading
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
        else:
            logger.warning("메인 스레드가 아니므로 signal 핸들러 등록을 건너뜁니다")
    except Exception as e:
        logger.warning(f"signal 핸들러 등록 실패, uvicorn 기본 처리에 위임: {e}")

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
