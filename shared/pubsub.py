import os
import logging
from typing import List, Optional

import redis

from .events import Event

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "scoring:events"
EVENT_LOG_KEY = "scoring:event_log"
EVENT_LOG_SIZE = 1000


class EventPublisher:
    """
    Publishes job lifecycle events on Redis.

    Every event goes to the shared events channel and to a per-participant
    channel, and is appended to a capped event log for late readers.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str = None) -> "EventPublisher":
        redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    def publish(self, event: Event):
        payload = event.to_json()
        try:
            self.redis.publish(EVENTS_CHANNEL, payload)
            self.redis.publish(event.participant_channel, payload)
            self.redis.lpush(EVENT_LOG_KEY, payload)
            self.redis.ltrim(EVENT_LOG_KEY, 0, EVENT_LOG_SIZE - 1)
        except redis.RedisError as e:
            # Event delivery never fails a job.
            logger.warning(f"Failed to publish {event.type_name} for {event.participant_key}: {e}")

    def get_recent_events(self, count: int = 50) -> List[Event]:
        events_json = self.redis.lrange(EVENT_LOG_KEY, 0, count - 1)
        return [Event.from_json(e) for e in events_json]


def publish_if_enabled(publisher: Optional[EventPublisher], event: Event):
    if publisher is not None:
        publisher.publish(event)
