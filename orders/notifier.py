import logging
from typing import List, Optional

import redis
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

ORDER_UPDATED = 'order_updated'
TABLE_UPDATED = 'table_updated'


class RedisNotifier:
    """Publish change events to connected clients through a Redis channel"""

    def __init__(self, client: Optional[redis.Redis] = None, channel: Optional[str] = None):
        self.redis_client = client or redis.Redis(
            host=settings.REDIS_HOST,
            port=int(settings.REDIS_PORT),
            db=int(settings.REDIS_DB),
            decode_responses=True
        )
        self.channel = channel or settings.NOTIFIER_CHANNEL

    def emit(self, event_name: str) -> bool:
        """
        Publish an event name on the notifier channel

        Args:
            event_name: Event to broadcast (order_updated or table_updated)

        Returns:
            True if published, False if the broadcast was dropped
        """
        try:
            self.redis_client.publish(self.channel, event_name)
        except redis.RedisError as exc:
            # Clients re-fetch authoritative state, a lost event is not an error
            logger.warning("Dropped %s notification: %s", event_name, exc)
            return False
        return True


class NullNotifier:
    """Discard every event"""

    def emit(self, event_name: str) -> bool:
        return False


class RecordingNotifier:
    """Keep emitted events in memory, for tests and local runs"""

    def __init__(self):
        self.events: List[str] = []

    def emit(self, event_name: str) -> bool:
        self.events.append(event_name)
        return True


def get_notifier():
    """Build the notifier configured by NOTIFIER_CLASS"""
    return import_string(settings.NOTIFIER_CLASS)()
