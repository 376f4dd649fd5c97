"""Re-export all models so Base.metadata sees them."""

from app.db.models.admin_setting import AdminSetting
from app.db.models.customer import Customer
from app.db.models.order import Order
from app.db.models.order_timeline import OrderTimelineEvent
from app.db.models.stripe_event_log import StripeEventLog
from app.db.models.webhook_debug_log import WebhookDebugLog, WebhookPayloadArchive
from app.db.models.webhook_delivery_log import WebhookDeliveryLog
from app.db.models.webhook_queue import WebhookQueueItem

__all__ = [
    "AdminSetting",
    "Customer",
    "Order",
    "OrderTimelineEvent",
    "StripeEventLog",
    "WebhookDebugLog",
    "WebhookDeliveryLog",
    "WebhookPayloadArchive",
    "WebhookQueueItem",
]
