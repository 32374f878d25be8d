from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Optional


class FixSubscriptionRequest(BaseModel):
    """구독 정보 복구 요청 (생략 시 본인 계정)"""
    userId: Optional[str] = Field(None, description="대상 사용자 ID (관리자만 타인 지정 가능)")
    customerId: Optional[str] = Field(None, description="Stripe 고객 ID")


class FixSubscriptionResult(BaseModel):
    subscription_id: Optional[str] = Field(None, description="Stripe 구독 ID")
    status: Optional[str] = Field(None, description="Stripe 구독 상태")
    plan: str = Field(..., description="내부 플랜")
    customer_id: str = Field(..., description="Stripe 고객 ID")
    wallet_synced: bool = Field(..., description="wallet 동기화 여부")
