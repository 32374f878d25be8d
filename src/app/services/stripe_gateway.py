"""Stripe API 게이트웨이

웹훅 서명 검증과 구독/Checkout 조회를 담당한다. 모듈 전역 ``stripe.api_key``
대신 명시적으로 생성한 ``stripe.StripeClient`` 를 주입받아 사용한다.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from core.interfaces import IStripeGateway


logger = logging.getLogger(__name__)


class StripeConfigurationError(RuntimeError):
    """필수 Stripe 설정 누락"""


class StripeWebhookSignatureError(RuntimeError):
    """웹훅 서명 또는 페이로드 검증 실패"""


class StripeAPIError(RuntimeError):
    """Stripe API 오류"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.code = code or self._extract_error_code()

    def _extract_error_code(self) -> Optional[str]:
        """응답 페이로드에서 오류 코드를 추출"""

        error = self.payload.get("error") if isinstance(self.payload, dict) else None
        if isinstance(error, dict):
            return error.get("code") or error.get("type")
        return None


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """StripeObject 를 일반 dict 로 변환"""

    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, attr, None)
        if callable(converter):
            try:
                return converter()
            except TypeError:
                continue
    return dict(obj)


class StripeGateway(IStripeGateway):
    """Stripe SDK 래퍼 (동기 SDK 호출은 스레드로 위임)"""

    ERROR_CODE_MESSAGES: Dict[str, str] = {
        "resource_missing": "요청한 Stripe 리소스를 찾을 수 없습니다.",
        "api_key_expired": "Stripe API 키가 만료되었습니다.",
        "rate_limit": "Stripe API 호출이 너무 많습니다. 잠시 후 다시 시도하세요.",
        "parameter_invalid_empty": "Stripe API 요청 파라미터가 비어 있습니다.",
        "parameter_unknown": "Stripe API 요청 파라미터를 인식하지 못했습니다.",
    }

    STATUS_MESSAGES: Dict[int, str] = {
        400: "Stripe API 요청 파라미터가 올바르지 않습니다.",
        401: "Stripe API 인증에 실패했습니다.",
        402: "Stripe 결제 요청이 거절되었습니다.",
        403: "Stripe API 접근 권한이 없습니다.",
        404: "요청한 Stripe 리소스를 찾지 못했습니다.",
        409: "Stripe 리소스 상태 충돌이 발생했습니다.",
        429: "Stripe API 호출이 제한되었습니다. 잠시 후 다시 시도하세요.",
        500: "Stripe API 서버 오류가 발생했습니다.",
    }

    def __init__(
        self,
        client: Optional[stripe.StripeClient],
        webhook_secret: Optional[str],
        *,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ) -> None:
        self.client = client
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    @classmethod
    def from_settings(cls, settings) -> "StripeGateway":
        """설정 객체로부터 게이트웨이 생성"""

        client = None
        if settings.STRIPE_SECRET_KEY:
            client = stripe.StripeClient(
                settings.STRIPE_SECRET_KEY,
                stripe_version=settings.STRIPE_API_VERSION,
                max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
            )
        else:
            logger.warning("[STRIPE] STRIPE_SECRET_KEY 미설정 - API 조회 기능 비활성화")
        return cls(client, settings.STRIPE_WEBHOOK_SECRET)

    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """서명 검증 후 이벤트 dict 반환"""

        if not self.webhook_secret:
            raise StripeConfigurationError("STRIPE_WEBHOOK_SECRET 이 설정되지 않았습니다.")
        if not sig_header:
            raise StripeWebhookSignatureError("stripe-signature 헤더가 없습니다.")

        # verify_header 는 본문을 그대로 서명 문자열에 넣으므로 str 로 넘긴다
        try:
            text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        except UnicodeDecodeError as exc:
            logger.error("[STRIPE] Webhook payload is not UTF-8: %s", exc)
            raise StripeWebhookSignatureError("Stripe 웹훅 페이로드를 해석할 수 없습니다.") from exc

        try:
            stripe.WebhookSignature.verify_header(
                text, sig_header, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("[STRIPE] Webhook signature verification failed: %s", exc)
            raise StripeWebhookSignatureError("Stripe 웹훅 서명 검증에 실패했습니다.") from exc

        try:
            event = json.loads(text)
        except ValueError as exc:
            logger.error("[STRIPE] Malformed webhook payload: %s", exc)
            raise StripeWebhookSignatureError("Stripe 웹훅 페이로드가 올바른 JSON 이 아닙니다.") from exc

        if not isinstance(event, dict) or not event.get("type"):
            raise StripeWebhookSignatureError("Stripe 이벤트 형식이 올바르지 않습니다.")
        return event

    def _require_client(self) -> stripe.StripeClient:
        if self.client is None:
            raise StripeConfigurationError("STRIPE_SECRET_KEY 가 설정되지 않았습니다.")
        return self.client

    async def _call(self, operation: str, func, *args, **kwargs) -> Any:
        """동기 Stripe 호출을 스레드에서 실행하고 오류를 변환"""

        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as exc:
            status_code = getattr(exc, "http_status", None) or 0
            code = getattr(exc, "code", None)
            message = self._resolve_error_message(code, status_code, exc)
            logger.error(
                "[STRIPE] API request failed: %s status=%s code=%s error=%s",
                operation,
                status_code,
                code,
                exc,
            )
            raise StripeAPIError(
                message,
                status_code,
                getattr(exc, "json_body", None),
                code=code,
            ) from exc

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """구독 조회"""

        client = self._require_client()
        subscription = await self._call(
            "subscriptions.retrieve",
            client.subscriptions.retrieve,
            subscription_id,
        )
        return to_plain_dict(subscription)

    async def list_subscriptions(
        self,
        customer_id: str,
        status: Optional[str] = None,
        limit: int = 5,
    ) -> List[Dict[str, Any]]:
        """고객의 구독 목록 조회"""

        client = self._require_client()
        params: Dict[str, Any] = {"customer": customer_id, "limit": limit}
        if status:
            params["status"] = status
        result = await self._call("subscriptions.list", client.subscriptions.list, params=params)
        return [to_plain_dict(item) for item in (getattr(result, "data", None) or [])]

    async def list_checkout_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        """Checkout 세션 라인 아이템 조회"""

        client = self._require_client()
        result = await self._call(
            "checkout.sessions.line_items.list",
            client.checkout.sessions.line_items.list,
            session_id,
            params={"limit": 100},
        )
        return [to_plain_dict(item) for item in (getattr(result, "data", None) or [])]

    def _resolve_error_message(self, code: Optional[str], status_code: int, exc: Exception) -> str:
        """Stripe 오류 코드를 기반으로 메시지 결정"""

        if code and code in self.ERROR_CODE_MESSAGES:
            return self.ERROR_CODE_MESSAGES[code]

        user_message = getattr(exc, "user_message", None)
        if isinstance(user_message, str) and user_message.strip():
            return user_message

        status_message = self.STATUS_MESSAGES.get(status_code)
        if status_message:
            return status_message

        return "Stripe API 요청에 실패했습니다"
