import logging
from typing import Iterable, Optional

import redis

from bracket_core.events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"


def tournament_channel(tournament_id: str) -> str:
    return f"tournament:{tournament_id}:events"


class Notifier:
    """
    Fire-and-forget event publisher.

    Publishing never raises: a redis failure is logged and the caller carries
    on, since bracket state is already committed when events go out.
    """

    def __init__(self, redis_url: str = None, enabled: bool = True, client: redis.Redis = None):
        self.enabled = enabled
        self.redis = client
        if self.redis is None and enabled:
            self.redis = redis.from_url(
                redis_url or 'redis://localhost:6379',
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )

    def publish(self, channel: str, event: Event) -> bool:
        if not self.enabled:
            logger.debug(f"Notifications disabled, dropping {event.type} for {channel}")
            return False
        try:
            self.redis.publish(channel, event.to_json())
            return True
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to publish {event.type} on {channel}: {e}")
            return False

    def publish_tournament_event(self, event: Event) -> bool:
        """Tournament channel plus the global feed; player-level events only go global."""
        sent = True
        if event.tournament_id:
            sent = self.publish(tournament_channel(event.tournament_id), event)
        return self.publish(GLOBAL_CHANNEL, event) and sent

    def publish_all(self, events: Iterable[Event]) -> int:
        return sum(1 for event in events if self.publish_tournament_event(event))

    def ping(self) -> Optional[bool]:
        """True/False for a reachable/unreachable redis, None when disabled."""
        if not self.enabled:
            return None
        try:
            return bool(self.redis.ping())
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False
