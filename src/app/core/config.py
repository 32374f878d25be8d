"""
애플리케이션 설정 관리
"""
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import validator
from pydantic_settings import BaseSettings


_FILE_PATH = Path(__file__).resolve()


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """환경 파일 후보를 가까운 디렉터리부터 수집"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for directory in file_path.parents:
        for name in (".env", ".env.local"):
            candidate = directory / name
            if candidate.exists() and candidate not in seen:
                collected.append(candidate)
                seen.add(candidate)

    return tuple(collected)


_ENV_FILES = _collect_env_files(_FILE_PATH)


def _load_dotenv_files() -> None:
    """프로젝트 전체에서 활용할 .env 파일들을 순차적으로 로드"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()


# Stripe 가격 ID → 내부 플랜 (월간/연간 가격이 같은 플랜으로 매핑됨)
DEFAULT_PRICE_PLAN_MAP: Dict[str, str] = {
    "price_1SZ9843G7U0M1bp1WcX6j6b1": "free",
    "price_1SZ98W3G7U0M1bp1u30VJE2V": "creator",
    "price_1SZTlN3G7U0M1bp1Us7dGSSg": "creator",
    "price_1SZ98n3G7U0M1bp1DipaxRvq": "collaborate",
    "price_1SZTmV3G7U0M1bp1GrNHBxUg": "collaborate",
    "price_1SZ98v3G7U0M1bp1YAD89Tx4": "scale",
    "price_1SZToP3G7U0M1bp1v0AWlXZ6": "scale",
}

DEFAULT_PLAN_MONTHLY_CREDITS: Dict[str, int] = {
    "free": 20,
    "creator": 50,
    "collaborate": 75,
    "scale": 150,
}


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # 서버 설정
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # Supabase 설정
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # 로깅 설정
    LOG_LEVEL: str = "INFO"

    # Stripe 설정
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_API_VERSION: str = "2025-08-27.basil"
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_PRICE_PLAN_MAP: Dict[str, str] = dict(DEFAULT_PRICE_PLAN_MAP)
    # 일회성 크레딧 구매용 가격 ID
    STRIPE_PRICE_ID_CREDITS: Optional[str] = None

    # 크레딧 정책
    PLAN_MONTHLY_CREDITS: Dict[str, int] = dict(DEFAULT_PLAN_MONTHLY_CREDITS)

    # 웹훅 중복 억제 윈도우 (초)
    WEBHOOK_EVENT_DEDUP_WINDOW_SECONDS: int = 300
    WEBHOOK_ACCOUNT_RECENCY_WINDOW_SECONDS: int = 30

    # 마켓플레이스 수수료 비율
    MARKETPLACE_PLATFORM_COMMISSION: float = 0.25

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        return (v or "INFO").upper()

    @validator('WEBHOOK_EVENT_DEDUP_WINDOW_SECONDS', 'WEBHOOK_ACCOUNT_RECENCY_WINDOW_SECONDS')
    def validate_window(cls, v):
        if v < 0:
            raise ValueError('웹훅 윈도우는 0 이상이어야 합니다')
        return v

    @validator('MARKETPLACE_PLATFORM_COMMISSION')
    def validate_commission(cls, v):
        if not 0 <= v < 1:
            raise ValueError('MARKETPLACE_PLATFORM_COMMISSION은 0 이상 1 미만이어야 합니다')
        return v

    class Config:
        env_file = tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None
        case_sensitive = True
        extra = "allow"  # 추가 환경변수 허용

# 전역 설정 인스턴스
settings = Settings()
