from app.modules.billing.api.v1.billing import router
from app.modules.billing.api.v1.billing_models import SubscriptionResponse
from app.modules.billing.domain.billing.lifecycle import SubscriptionLifecycleManager
from app.modules.billing.domain.billing.webhook_handler import WebhookIngestionHandler

__all__ = [
    "router",
    "SubscriptionLifecycleManager",
    "SubscriptionResponse",
    "WebhookIngestionHandler",
]
