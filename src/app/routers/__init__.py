# Routers package
from . import (
    admin_router,
    billing_router,
    stripe_webhook_router,
)

__all__ = [
    "admin_router",
    "billing_router",
    "stripe_webhook_router",
]
