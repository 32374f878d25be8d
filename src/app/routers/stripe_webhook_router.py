"""
Stripe Webhook Router

- stripe-signature 헤더 검증 (Stripe SDK, 원본 바이트 기준)
- 검증된 이벤트를 StripeWebhookProcessor 로 전달
- 처리/중복/미지원 이벤트 모두 200 {"received": true} 로 응답
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from core.responses import ConfigurationException, WebhookAck, success_response
from services.stripe_gateway import StripeConfigurationError, StripeWebhookSignatureError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks", "stripe"])

# main.py 에서 주입
webhook_processor = None  # type: ignore


def set_dependencies(processor) -> None:
    """main.py에서 호출하여 처리기 인스턴스를 주입한다."""
    global webhook_processor
    webhook_processor = processor


def get_webhook_processor():
    if webhook_processor is None:
        raise ConfigurationException("Stripe 웹훅 처리기가 초기화되지 않았습니다.")
    return webhook_processor


async def _receive(request: Request, stripe_signature: str | None, processor) -> WebhookAck:
    raw = await request.body()
    logger.info(
        "[STRIPE] webhook received: path=%s len=%s has_signature=%s",
        request.url.path,
        len(raw),
        bool(stripe_signature),
    )

    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature")

    try:
        event = processor.gateway.construct_event(raw, stripe_signature)
    except StripeConfigurationError as e:
        logger.error("[STRIPE] webhook secret not configured: %s", e)
        raise ConfigurationException(str(e))
    except StripeWebhookSignatureError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}")

    outcome = await processor.process_event(event)
    logger.info(
        "[STRIPE] webhook processed: event=%s id=%s status=%s note=%s",
        outcome.get("event_type"),
        outcome.get("event_id"),
        outcome.get("status"),
        outcome.get("note"),
    )
    return WebhookAck()


@router.get("/api/webhooks/stripe")
async def stripe_webhook_get():
    return success_response(data={"ok": True}, message="stripe webhook alive")


@router.post("/api/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    processor=Depends(get_webhook_processor),
):
    return await _receive(request, stripe_signature, processor)


@router.post("/api/stripe/webhook", response_model=WebhookAck)
async def stripe_webhook_legacy(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    processor=Depends(get_webhook_processor),
):
    """이전 경로 호환용"""
    return await _receive(request, stripe_signature, processor)
