from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Protocol
from fastapi import BackgroundTasks
from pydantic import BaseModel, Field
from vetclinic.core.config import settings
import logging

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    invoice_approved = "invoice:approved"
    medication_labels = "print:medication-labels"
    low_stock = "inventory:low-stock"
    stock_adjusted = "inventory:stock-adjusted"
    invoice_sent = "invoice:sent"
    payment_recorded = "payment:recorded"
    inventory_received = "inventory:received"


class NotificationEvent(BaseModel):
    type: NotificationType
    payload: Dict[str, Any]
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


class NotificationSink(Protocol):
    async def send(self, event: NotificationEvent) -> None:
        ...


class LogNotificationSink:
    async def send(self, event: NotificationEvent) -> None:
        logger.info(f"notification {event.type.value} {event.model_dump_json(include={'payload'})}")


class NotificationDispatcher:
    """Fans post-commit events out to every sink.

    Delivery is best effort: a failing sink is logged and skipped, and never
    reaches the caller whose change has already been committed.
    """

    def __init__(self, sinks: Optional[List[NotificationSink]] = None):
        self.sinks = list(sinks) if sinks is not None else [LogNotificationSink()]

    async def publish(self, events: List[NotificationEvent]):
        for event in events:
            for sink in self.sinks:
                try:
                    await sink.send(event)
                except Exception:
                    logger.exception(f"failed to deliver {event.type.value} via {type(sink).__name__}")

    async def dispatch(self, events: List[NotificationEvent], background_tasks: Optional[BackgroundTasks] = None):
        """Publish after the response when running inside a request,
        inline otherwise."""
        if not events:
            return
        if background_tasks is not None:
            background_tasks.add_task(self.publish, events)
        else:
            await self.publish(events)


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    sinks: List[NotificationSink] = [LogNotificationSink()]
    if settings.notification_webhook_url:
        from vetclinic.external.webhook import WebhookNotificationSink
        sinks.append(WebhookNotificationSink(settings.notification_webhook_url, settings.notification_timeout_seconds))
    return NotificationDispatcher(sinks)


def low_stock_event(item) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.low_stock,
        payload={
            "item_id": str(item.id),
            "item_name": item.name,
            "current_stock": item.current_stock,
            "minimum_stock": item.minimum_stock,
        },
    )
