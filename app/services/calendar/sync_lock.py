# app/services/calendar/sync_lock.py
import logging
import uuid
from contextlib import contextmanager
from typing import Optional

import redis

from app.config.redis import RedisKeys, get_sync_redis
from app.config.settings import get_settings
from app.services.calendar.exceptions import SyncInProgress

logger = logging.getLogger(__name__)

# Delete the key only if we still own it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisSyncLock:
    """Per-user single-flight guard around push / pull / cleanup.

    The lock expires on its own after ``ttl_seconds`` so a crashed worker
    cannot block a user's sync forever.
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        self.client = client or get_sync_redis()
        self.ttl_seconds = ttl_seconds or get_settings().SYNC_LOCK_TTL_SECONDS

    @staticmethod
    def key(user_id: str) -> str:
        return RedisKeys.CALENDAR_SYNC_LOCK.format(user_id=user_id)

    def acquire(self, user_id: str) -> Optional[str]:
        token = uuid.uuid4().hex
        if self.client.set(self.key(user_id), token, nx=True, ex=self.ttl_seconds):
            return token
        return None

    def release(self, user_id: str, token: str) -> bool:
        released = self.client.eval(_RELEASE_SCRIPT, 1, self.key(user_id), token)
        if not released:
            logger.warning(f"Sync lock for user {user_id} expired before release")
        return bool(released)

    def is_locked(self, user_id: str) -> bool:
        return bool(self.client.exists(self.key(user_id)))

    @contextmanager
    def hold(self, user_id: str, operation: str = "sync"):
        """Raises SyncInProgress when another sync for this user is running"""
        token = self.acquire(user_id)
        if token is None:
            logger.info(f"Calendar {operation} for user {user_id} skipped, another sync is running")
            raise SyncInProgress(f"A calendar sync is already running for user {user_id}")
        try:
            yield
        finally:
            self.release(user_id, token)
