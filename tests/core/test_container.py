"""DI 컨테이너 / 서비스 팩토리 테스트"""
from types import SimpleNamespace

import pytest

from core.container import DIContainer, container
from core.factory import ServiceFactory
from core.interfaces import IDatabaseHelper
from services.stripe_webhook_processor import StripeWebhookProcessor
from services.webhook_event_logger import WebhookEventLogger
from tests.mocks import FakeSupabaseClient, StubStripeGateway


class _Repo:
    pass


class _Service:
    def __init__(self, repo: _Repo, window: int = 30):
        self.repo = repo
        self.window = window


def test_register_service_resolves_typed_dependencies():
    di = DIContainer()
    repo = _Repo()
    di.register_singleton(_Repo, repo)
    di.register_service(_Service, _Service)

    service = di.get(_Service)

    assert service.repo is repo
    assert service.window == 30
    assert di.get(_Service) is service


def test_transient_factory_builds_new_instance_each_time():
    di = DIContainer()
    di.register_transient(_Repo, _Repo)

    assert di.get(_Repo) is not di.get(_Repo)


def test_unregistered_dependency_raises():
    di = DIContainer()
    di.register_service(_Service, _Service)

    with pytest.raises(ValueError):
        di.get(_Service)
    assert di.get_optional(_Repo) is None


def test_base_service_subclass_resolves_db_helper():
    di = DIContainer()
    helper = object()
    di.register_singleton(IDatabaseHelper, helper)
    di.register_service(WebhookEventLogger, WebhookEventLogger)

    assert di.get(WebhookEventLogger).db_helper is helper


@pytest.fixture
def clean_container():
    container.reset()
    yield container
    container.reset()


def test_factory_wires_webhook_processor(clean_container):
    settings = SimpleNamespace(
        STRIPE_WEBHOOK_SECRET="whsec_test_secret",
        PLAN_MONTHLY_CREDITS={"creator": 60},
        STRIPE_PRICE_PLAN_MAP={"price_a": "scale"},
        STRIPE_PRICE_ID_CREDITS="price_credits",
        MARKETPLACE_PLATFORM_COMMISSION=0.2,
        WEBHOOK_EVENT_DEDUP_WINDOW_SECONDS=120,
        WEBHOOK_ACCOUNT_RECENCY_WINDOW_SECONDS=10,
    )
    gateway = StubStripeGateway()

    ServiceFactory.configure_dependencies(settings, supabase_client=FakeSupabaseClient(), gateway=gateway)

    processor = ServiceFactory.get_webhook_processor()
    assert isinstance(processor, StripeWebhookProcessor)
    assert processor.gateway is gateway
    assert processor.credits_price_id == "price_credits"
    assert processor.ledger.plan_config.get_monthly_credits("creator") == 60
    assert processor.guard.account_window.total_seconds() == 10
    assert processor.marketplace.platform_commission == 0.2
    assert processor.plan_resolver.plan_from_prices(["price_a"]).value == "scale"
    assert ServiceFactory.get_subscription_sync_service().gateway is gateway
    assert ServiceFactory.get_db_helper() is processor.db_helper
