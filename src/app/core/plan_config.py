"""
플랜별 설정 및 구독 상태 관리
"""
from typing import Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum


class PlanId(str, Enum):
    """내부 플랜 식별자"""
    FREE = "free"
    CREATOR = "creator"
    COLLABORATE = "collaborate"
    SCALE = "scale"

    @property
    def legacy_name(self) -> str:
        """user_settings 테이블에서 사용하는 플랜 이름"""
        return LEGACY_PLAN_NAMES[self]

    @property
    def is_paid(self) -> bool:
        return self is not PlanId.FREE


LEGACY_PLAN_NAMES: Dict[PlanId, str] = {
    PlanId.FREE: "free",
    PlanId.CREATOR: "pro",
    PlanId.COLLABORATE: "teams",
    PlanId.SCALE: "enterprise",
}

# 레거시 이름(pro/teams/enterprise)도 메타데이터에서 허용
PLAN_ALIASES: Dict[str, PlanId] = {
    **{plan.value: plan for plan in PlanId},
    **{legacy: plan for plan, legacy in LEGACY_PLAN_NAMES.items()},
}


class SubscriptionStatus(str, Enum):
    """내부 구독 상태 (4단계)"""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"

    @property
    def wallet_value(self) -> str:
        """wallet 테이블은 cancelled 철자를 사용"""
        if self is SubscriptionStatus.CANCELED:
            return "cancelled"
        return self.value


# Stripe 구독 상태 → 내부 상태. trialing은 크레딧 지급 관점에서 active로 취급
STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "cancelled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.INACTIVE,
    "incomplete": SubscriptionStatus.INACTIVE,
    "incomplete_expired": SubscriptionStatus.INACTIVE,
    "paused": SubscriptionStatus.INACTIVE,
}


@dataclass
class PlanFeatures:
    """플랜별 기능 설정"""
    monthly_credits: int
    app_deploys_per_day: int
    can_purchase_credits: bool


class PlanConfig:
    """플랜 설정 관리자"""

    PLAN_CONFIGS = {
        PlanId.FREE: PlanFeatures(
            monthly_credits=20,
            app_deploys_per_day=1,
            can_purchase_credits=False,
        ),
        PlanId.CREATOR: PlanFeatures(
            monthly_credits=50,
            app_deploys_per_day=1,
            can_purchase_credits=True,
        ),
        PlanId.COLLABORATE: PlanFeatures(
            monthly_credits=75,
            app_deploys_per_day=5,
            can_purchase_credits=True,
        ),
        PlanId.SCALE: PlanFeatures(
            monthly_credits=150,
            app_deploys_per_day=50,
            can_purchase_credits=True,
        ),
    }

    def __init__(self, monthly_credits: Optional[Dict[str, int]] = None):
        # 환경 설정으로 월간 크레딧을 덮어쓸 수 있음
        self._monthly_overrides: Dict[PlanId, int] = {}
        for key, value in (monthly_credits or {}).items():
            plan = PLAN_ALIASES.get(str(key).strip().lower())
            if plan is not None:
                self._monthly_overrides[plan] = int(value)

    @classmethod
    def get_features(cls, plan: PlanId) -> PlanFeatures:
        """플랜에 따른 기능 설정 반환"""
        return cls.PLAN_CONFIGS.get(PlanId(plan), cls.PLAN_CONFIGS[PlanId.FREE])

    def get_monthly_credits(self, plan: PlanId) -> int:
        """플랜의 월간 크레딧 지급량"""
        plan = PlanId(plan)
        if plan in self._monthly_overrides:
            return self._monthly_overrides[plan]
        return self.get_features(plan).monthly_credits

    def get_plan_info(self, plan: PlanId) -> Dict[str, Any]:
        """플랜 정보 전체 반환"""
        plan = PlanId(plan)
        features = self.get_features(plan)
        return {
            "plan": plan.value,
            "legacy_name": plan.legacy_name,
            "monthly_credits": self.get_monthly_credits(plan),
            "app_deploys_per_day": features.app_deploys_per_day,
            "can_purchase_credits": features.can_purchase_credits,
        }
