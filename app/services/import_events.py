"""Import lifecycle notifications over Redis pub/sub and webhooks."""
import json
import logging
from typing import Any, Dict, Optional, Sequence

import httpx
import redis

from app.config import Settings

# Supported import event types
IMPORT_EVENTS = [
    "import.started",
    "import.progress",
    "import.completed",
    "import.failed",
    "import.rolled_back",
]

logger = logging.getLogger(__name__)


def progress_channel(job_id: str) -> str:
    """Redis channel carrying progress messages for one job."""
    return f"import:{job_id}"


class ImportEventPublisher:
    """
    Fan out import events to Redis subscribers and configured webhook URLs.

    Delivery is best effort: failures are logged and never reach the import job.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        webhook_urls: Sequence[str] = (),
        timeout: float = 5.0,
    ):
        self._redis_url = redis_url
        self._webhook_urls = list(webhook_urls)
        self._timeout = timeout

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        """
        Publish one event.

        Args:
            event_type: One of IMPORT_EVENTS
            payload: Event data; must contain "job_id"

        Raises:
            ValueError: If event_type is not one of IMPORT_EVENTS
        """
        if event_type not in IMPORT_EVENTS:
            raise ValueError(f"Unknown import event type: {event_type}")
        message = {"event": event_type, **payload}
        if self._redis_url:
            self._publish_redis(message)
        if self._webhook_urls and event_type != "import.progress":
            self._send_webhooks(message)

    def _publish_redis(self, message: Dict[str, Any]) -> None:
        try:
            client = redis.Redis.from_url(self._redis_url, decode_responses=True)
            client.publish(progress_channel(message["job_id"]), json.dumps(message, default=str))
        except redis.RedisError as e:
            logger.warning(f"Failed to publish import event {message['event']}: {e}")

    def _send_webhooks(self, message: Dict[str, Any]) -> None:
        body = json.loads(json.dumps(message, default=str))
        with httpx.Client(timeout=self._timeout) as client:
            for url in self._webhook_urls:
                try:
                    client.post(url, json=body)
                except httpx.HTTPError as e:
                    logger.warning(f"Failed to send webhook to {url}: {e}")


def create_event_publisher(settings: Settings) -> Optional[ImportEventPublisher]:
    if not settings.import_events_enabled:
        return None
    return ImportEventPublisher(settings.redis_url, settings.import_webhook_urls)
