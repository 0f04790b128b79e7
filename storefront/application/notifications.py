"""Outbound order and subscription events.

Delivery is fire-and-forget: a failed webhook call is logged and dropped,
it never fails the operation that produced the event.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi import BackgroundTasks

from storefront.core_settings import Settings, get_settings
from shared.core import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    def __init__(self, settings: Optional[Settings] = None, background_tasks: Optional[BackgroundTasks] = None):
        self.settings = settings or get_settings()
        self.background_tasks = background_tasks

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        message = {
            "event": event,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        if self.background_tasks is not None:
            self.background_tasks.add_task(self._deliver, message)
        else:
            self._deliver(message)

    def _deliver(self, message: Dict[str, Any]) -> None:
        url = self.settings.NOTIFICATION_WEBHOOK_URL
        if not url:
            logger.info(
                f"Notification {message['event']} (no webhook configured)",
                extra={'extra_fields': message}
            )
            return
        try:
            with httpx.Client(timeout=self.settings.NOTIFICATION_TIMEOUT_SECONDS) as client:
                response = client.post(url, json=message)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                f"Notification {message['event']} delivery failed: {e}",
                extra={'extra_fields': {'event': message['event'], 'url': url}}
            )
