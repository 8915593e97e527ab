from .subscription import Subscription, SubscriptionStatus, LIVE_STATUSES
from .webhook_event import WebhookEvent, WebhookEventStatus
from .sync_run import SyncRun, SyncRunType, SyncRunStatus

__all__ = [
    "Subscription",
    "SubscriptionStatus",
    "LIVE_STATUSES",
    "WebhookEvent",
    "WebhookEventStatus",
    "SyncRun",
    "SyncRunType",
    "SyncRunStatus",
]
