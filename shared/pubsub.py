import os
import logging
import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"
EVENT_LOG_LIMIT = 1000


class EventPublisher:
    """Publishes room lifecycle events on Redis channels and keeps a capped log per room."""

    def __init__(self, redis_client: redis.Redis = None, redis_url: str = None):
        if redis_client is None:
            redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
            redis_client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
        self.redis = redis_client

    @staticmethod
    def room_channel(room_id: int) -> str:
        return f"room:{room_id}:events"

    @staticmethod
    def room_log_key(room_id: int) -> str:
        return f"room:{room_id}:event_log"

    def publish(self, event: Event) -> bool:
        """
        Publish an event for a committed transition.

        Returns False when Redis is unreachable. The transition already
        committed on the ledger, so the failure is logged and reported to the
        caller rather than raised.
        """
        payload = event.to_json()
        try:
            if event.room_id is not None:
                self.redis.publish(self.room_channel(event.room_id), payload)
                self.redis.lpush(self.room_log_key(event.room_id), payload)
                self.redis.ltrim(self.room_log_key(event.room_id), 0, EVENT_LOG_LIMIT - 1)
            self.redis.publish(GLOBAL_CHANNEL, payload)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to publish {event.to_dict()['type']} event: {e}")
            return False
        return True

    def get_recent_events(self, room_id: int, count: int = 50) -> list:
        events_json = self.redis.lrange(self.room_log_key(room_id), 0, count - 1)
        return [Event.from_json(e) for e in events_json]

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.exceptions.RedisError:
            return False
