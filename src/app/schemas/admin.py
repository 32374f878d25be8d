from __future__ import annotations

from pydantic import BaseModel, Field


class CreditAdjustRequest(BaseModel):
    amount: int = Field(..., description="조정할 크레딧 (음수는 차감)")
    reason: str = Field(..., min_length=1, max_length=500, description="조정 사유")
