# app/services/calendar/notifier.py
"""Fire-and-forget delivery of calendar signals to connected clients."""
import json
import logging
from typing import Any, Dict, Optional

import redis

from app.config.redis import RedisKeys

logger = logging.getLogger(__name__)

CALENDAR_UPDATED = "calendar-updated"
SYNC_STARTED = "sync-started"
SYNC_COMPLETED = "sync-completed"
SYNC_ERROR = "sync-error"


class ChangeNotifier:
    def emit_to_user(self, user_id: str, event_name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError


class NullNotifier(ChangeNotifier):
    def emit_to_user(self, user_id, event_name, payload=None):
        return None


class RedisChangeNotifier(ChangeNotifier):
    """Publishes on ``user-{id}``; the browser push transport subscribes to it"""

    def __init__(self, client: redis.Redis):
        self.client = client

    def emit_to_user(self, user_id, event_name, payload=None):
        message = json.dumps({"event": event_name, "payload": payload or {}}, default=str)
        try:
            self.client.publish(RedisKeys.USER_CHANNEL.format(user_id=user_id), message)
        except redis.RedisError as e:
            logger.warning(f"Could not emit {event_name} to user {user_id}: {e}")
