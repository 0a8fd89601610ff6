# prepstream/storage.py
import logging
import os

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import ValidationError

from prepstream.schemas import DEFAULT_FILTERS, Filters

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379")
FILTERS_KEY_PREFIX = "prepstream:filters:"


class RedisFilterStore:
    """Persists the last committed filter selection per feed."""

    def __init__(self, redis_url: str = REDIS_URL, client=None):
        self.redis = client or redis.from_url(redis_url, decode_responses=True)

    async def get_filters(self, feed_id: str) -> Filters:
        try:
            data = await self.redis.get(f"{FILTERS_KEY_PREFIX}{feed_id}")
        except RedisError:
            logger.warning("Could not read filters for feed %s, using defaults", feed_id, exc_info=True)
            return DEFAULT_FILTERS
        if not data:
            return DEFAULT_FILTERS
        try:
            return Filters.model_validate_json(data)
        except ValidationError:
            logger.warning("Stored filters for feed %s are unreadable, using defaults", feed_id)
            return DEFAULT_FILTERS

    async def set_filters(self, feed_id: str, filters: Filters) -> None:
        await self.redis.set(f"{FILTERS_KEY_PREFIX}{feed_id}", filters.model_dump_json())

    async def close(self) -> None:
        await self.redis.aclose()
