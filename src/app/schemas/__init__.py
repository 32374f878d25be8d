"""
API 요청/응답 스키마
"""
from .admin import CreditAdjustRequest
from .billing import FixSubscriptionRequest, FixSubscriptionResult

__all__ = [
    "CreditAdjustRequest",
    "FixSubscriptionRequest",
    "FixSubscriptionResult",
]
