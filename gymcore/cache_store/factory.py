"""Factory for the cache store chosen at startup."""

from __future__ import annotations

import redis

from gymcore import config
from gymcore.cache import CacheStore
from gymcore.cache_store.memory import InMemoryCacheMedium
from gymcore.cache_store.redis import RedisCacheMedium
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="cache_store/factory")


def build_cache_store(settings: config.Settings | None = None) -> CacheStore:
    """Build the process-wide cache store.

    Redis is used when ``cache_redis_url`` is set and answers a ping;
    otherwise entries live in process memory.
    """
    settings = settings or config.settings
    prefix = settings.cache_prefix

    if settings.cache_redis_url:
        masked = mask_db_url(settings.cache_redis_url)
        try:
            client = redis.Redis.from_url(settings.cache_redis_url)
            client.ping()
            logger.info("Using RedisCacheMedium", extra={"redis_url": masked})
            return CacheStore(RedisCacheMedium(client), prefix=prefix)
        except Exception as exc:
            logger.warning("Falling back to InMemoryCacheMedium (Redis unavailable)", extra={"error": str(exc)})

    logger.info("Using InMemoryCacheMedium")
    return CacheStore(InMemoryCacheMedium(), prefix=prefix)
