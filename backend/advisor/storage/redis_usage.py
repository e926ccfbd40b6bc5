"""
Monthly per-model usage counters in Redis.

Key layout: advisor:usage:{user_id}:{YYYY-MM}:{model}

INCR is atomic on the server, so concurrent requests for the same
(user, model) never lose an increment. Keys expire a few days after the
month ends so old periods clean themselves up.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from redis.asyncio import Redis

from advisor.core.logging import get_logger
from advisor.models.subscription import ModelAccess, UsageSnapshot

logger = get_logger(__name__)

KEY_PREFIX = "advisor:usage"
EXPIRY_GRACE = timedelta(days=7)


def current_period(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def period_expiry(now: Optional[datetime] = None) -> datetime:
    """First instant of next month plus a grace window."""
    now = now or datetime.now(timezone.utc)
    if now.month == 12:
        next_month = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_month = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return next_month + EXPIRY_GRACE


class RedisUsageCounter:
    """Atomic usage counters keyed by user, period and model."""

    def __init__(self, redis: Redis, key_prefix: str = KEY_PREFIX):
        self.redis = redis
        self.key_prefix = key_prefix

    def _key(self, user_id: str, model: ModelAccess, period: str) -> str:
        return f"{self.key_prefix}:{user_id}:{period}:{model.value}"

    async def increment(
        self, user_id: str, model: ModelAccess, now: Optional[datetime] = None
    ) -> int:
        """Increment and return the new count for the current period."""
        key = self._key(user_id, model, current_period(now))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expireat(key, period_expiry(now))
            count, _ = await pipe.execute()
        logger.debug("usage_counter_incremented", user_id=user_id, model=model.value, count=count)
        return int(count)

    async def get_usage(
        self, user_id: str, now: Optional[datetime] = None
    ) -> UsageSnapshot:
        period = current_period(now)
        models = list(ModelAccess)
        values = await self.redis.mget([self._key(user_id, m, period) for m in models])
        counts = {m: int(v) for m, v in zip(models, values) if v is not None}
        return UsageSnapshot(counts=counts)

    async def aclose(self) -> None:
        await self.redis.aclose()


def connect_usage_counter(redis_url: Optional[str] = None) -> Optional[RedisUsageCounter]:
    """
    Build a counter over its own Redis client.

    The URL falls back to REDIS_URL; without either, returns None and callers
    keep counters in their primary store. The client connects lazily, on the
    first command.
    """
    url = redis_url or os.getenv("REDIS_URL")
    if not url:
        return None
    client = Redis.from_url(
        url,
        max_connections=20,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        decode_responses=True,
    )
    logger.info("usage_counter_configured")
    return RedisUsageCounter(client)
