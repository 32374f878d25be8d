"""Stripe 구독/가격 객체 → 내부 플랜 매핑"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from core.plan_config import PLAN_ALIASES, STRIPE_STATUS_MAP, PlanId, SubscriptionStatus


logger = logging.getLogger(__name__)

# 메타데이터에서 플랜을 찾는 키 (앞쪽 우선)
PLAN_METADATA_KEYS = ("plan_type", "plan_id", "plan")

PlanSource = Union[str, Mapping[str, Any], None]


def parse_plan_id(value: Any) -> Optional[PlanId]:
    """문자열을 PlanId 로 변환 (레거시 이름 포함), 알 수 없으면 None"""
    if isinstance(value, PlanId):
        return value
    if not isinstance(value, str):
        return None
    return PLAN_ALIASES.get(value.strip().lower())


def normalize_subscription_status(status: Any) -> SubscriptionStatus:
    """Stripe 구독 상태를 내부 4단계 상태로 정규화"""
    if isinstance(status, SubscriptionStatus):
        return status
    if not isinstance(status, str):
        return SubscriptionStatus.INACTIVE
    return STRIPE_STATUS_MAP.get(status.strip().lower(), SubscriptionStatus.INACTIVE)


def extract_price_ids(obj: PlanSource) -> List[str]:
    """구독/가격/라인 아이템 객체에서 가격 ID 목록 추출"""
    if obj is None:
        return []
    if isinstance(obj, str):
        return [obj] if obj else []

    price_ids: List[str] = []

    def _add(value: Any) -> None:
        if isinstance(value, Mapping):
            value = value.get("id")
        if isinstance(value, str) and value and value not in price_ids:
            price_ids.append(value)

    # 가격 객체 자체
    if obj.get("object") == "price":
        _add(obj.get("id"))

    _add(obj.get("price"))
    _add(obj.get("plan"))

    # basil API 의 인보이스 라인: pricing.price_details.price
    pricing = obj.get("pricing")
    if isinstance(pricing, Mapping):
        details = pricing.get("price_details")
        if isinstance(details, Mapping):
            _add(details.get("price"))

    items = obj.get("items")
    if isinstance(items, Mapping):
        for item in items.get("data") or []:
            if isinstance(item, Mapping):
                for price_id in extract_price_ids(item):
                    _add(price_id)

    return price_ids


class PlanResolver:
    """메타데이터 → 가격 테이블 → 기본값(creator) 순으로 플랜 결정"""

    def __init__(
        self,
        price_plan_map: Optional[Mapping[str, str]] = None,
        default_plan: PlanId = PlanId.CREATOR,
    ):
        self.default_plan = default_plan
        self.price_plan_map: Dict[str, PlanId] = {}
        for price_id, plan_name in (price_plan_map or {}).items():
            plan = parse_plan_id(plan_name)
            if plan is None:
                logger.warning("[STRIPE] 알 수 없는 플랜 매핑 무시: %s -> %s", price_id, plan_name)
                continue
            self.price_plan_map[price_id] = plan

    def plan_from_metadata(self, metadata: Any) -> Optional[PlanId]:
        if not isinstance(metadata, Mapping):
            return None
        for key in PLAN_METADATA_KEYS:
            plan = parse_plan_id(metadata.get(key))
            if plan is not None:
                return plan
        return None

    def plan_from_prices(self, price_ids: Iterable[str]) -> Optional[PlanId]:
        for price_id in price_ids:
            plan = self.price_plan_map.get(price_id)
            if plan is not None:
                return plan
        return None

    def resolve(self, source: PlanSource) -> PlanId:
        """구독 객체, 가격 객체 또는 가격 ID 로부터 플랜 결정"""
        if isinstance(source, Mapping):
            plan = self.plan_from_metadata(source.get("metadata"))
            if plan is not None:
                return plan

        price_ids = extract_price_ids(source)
        plan = self.plan_from_prices(price_ids)
        if plan is not None:
            return plan

        logger.warning(
            "[STRIPE] 플랜을 확인할 수 없어 기본 플랜 적용: prices=%s default=%s",
            price_ids,
            self.default_plan.value,
        )
        return self.default_plan

    def contains_price(self, source: PlanSource, price_id: Optional[str]) -> bool:
        """객체에 특정 가격 ID 가 포함되어 있는지 확인"""
        if not price_id:
            return False
        return price_id in extract_price_ids(source)
