"""템플릿 판매 수익 원장 테스트"""
import pytest

from tests.mocks import build_stack, make_event


def _template_session(payment_intent="pi_tpl", **metadata):
    return {
        "id": "cs_tpl",
        "mode": "payment",
        "payment_intent": payment_intent,
        "amount_total": 2000,
        "client_reference_id": "buyer-1",
        "metadata": {"type": "template_purchase", "creator_id": "creator-1", "template_id": "tpl-1", **metadata},
    }


@pytest.mark.asyncio
async def test_sale_credits_creator_wallet():
    """수수료를 뺀 금액이 크리에이터 지갑에 적립된다"""

    stack = build_stack()

    result = await stack.processor.process_event(make_event("checkout.session.completed", _template_session()))

    assert result["details"] == {"marketplace_sale": True}
    [sale] = stack.client.rows("marketplace_transactions")
    assert sale["amount"] == 15.0
    assert sale["metadata"]["platform_fee"] == 5.0
    assert sale["buyer_id"] == "buyer-1"
    wallet = stack.client.row("marketplace_wallet", creator_id="creator-1")
    assert wallet["balance"] == 15.0
    assert wallet["pending_balance"] == 15.0
    assert wallet["total_earned"] == 15.0
    # 구독 크레딧 원장은 건드리지 않는다
    assert stack.client.rows("wallet") == []


@pytest.mark.asyncio
async def test_metadata_amounts_take_precedence():
    stack = build_stack()
    session = _template_session(price="30", platform_fee="3", creator_earnings="27")

    await stack.processor.process_event(make_event("checkout.session.completed", session))

    assert stack.client.row("marketplace_wallet", creator_id="creator-1")["balance"] == 27.0


@pytest.mark.asyncio
async def test_duplicate_sale_is_recorded_once():
    stack = build_stack()
    session = _template_session()

    await stack.marketplace.record_sale(session)
    await stack.marketplace.record_sale(session)

    assert len(stack.client.rows("marketplace_transactions")) == 1
    assert stack.client.row("marketplace_wallet", creator_id="creator-1")["balance"] == 15.0


@pytest.mark.asyncio
async def test_refund_reverses_sale_earnings():
    stack = build_stack()
    await stack.processor.process_event(make_event("checkout.session.completed", _template_session(), event_id="evt_s"))

    charge = {"id": "ch_tpl", "payment_intent": "pi_tpl", "amount_refunded": 2000, "metadata": {}}
    result = await stack.processor.process_event(make_event("charge.refunded", charge, event_id="evt_r"))

    assert result["details"] == {"marketplace_refund": True}
    wallet = stack.client.row("marketplace_wallet", creator_id="creator-1")
    assert wallet["balance"] == 0.0
    assert wallet["total_earned"] == 15.0
    assert [row["type"] for row in stack.client.rows("marketplace_transactions")] == ["sale", "refund"]


@pytest.mark.asyncio
async def test_refund_without_sale_returns_false():
    stack = build_stack()

    assert await stack.marketplace.record_refund({"id": "ch_x", "payment_intent": "pi_none"}) is False
