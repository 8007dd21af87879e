"""
Cache-aside helper over Redis.

Values go through the app's JSON provider in both directions, so a cached
value reads back the way a fresh response serializes it. When Redis
cannot be reached the helpers fall back to the fetcher (reads) or report
failure (writes) so a cache outage never takes the statistics endpoints
down with it.
"""
import logging

import redis
from flask import current_app

logger = logging.getLogger(__name__)

REDIS_EXTENSION_KEY = 'redis'


def get_redis():
    """The app's Redis client, created on first use from REDIS_URL."""
    client = current_app.extensions.get(REDIS_EXTENSION_KEY)
    if client is None:
        client = redis.Redis.from_url(current_app.config['REDIS_URL'], decode_responses=True)
        current_app.extensions[REDIS_EXTENSION_KEY] = client
    return client


class CacheService:

    @staticmethod
    def get(key):
        try:
            cached = get_redis().get(key)
        except redis.RedisError:
            logger.exception("Cache read failed for %s", key)
            return None
        return current_app.json.loads(cached) if cached is not None else None

    @staticmethod
    def set(key, value, ttl=None):
        ttl = ttl or current_app.config['CACHE_TTL']
        try:
            get_redis().set(key, current_app.json.dumps(value), ex=ttl)
            return True
        except redis.RedisError:
            logger.exception("Cache write failed for %s", key)
            return False

    @staticmethod
    def get_or_set(key, fetcher, ttl=None, transform=None):
        """
        Return the cached value for ``key`` or call ``fetcher()`` and cache its result.

        Empty results (None, {}, []) are returned but not cached. ``transform``
        is applied to whatever is returned, cached or fresh.
        """
        ttl = ttl or current_app.config['CACHE_TTL']
        client = get_redis()

        try:
            cached = client.get(key)
        except redis.RedisError:
            logger.exception("Cache error for key %s, using fresh data", key)
            fresh = fetcher()
            return transform(fresh) if transform else fresh

        if cached is not None:
            data = current_app.json.loads(cached)
            return transform(data) if transform else data

        fresh = fetcher()
        if fresh:
            try:
                client.set(key, current_app.json.dumps(fresh), ex=ttl)
            except redis.RedisError:
                logger.exception("Cache write failed for %s", key)

        return transform(fresh) if transform else fresh

    @staticmethod
    def invalidate(key):
        """Delete a key, or every key matching a glob pattern when it contains '*'."""
        try:
            client = get_redis()
            if '*' in key:
                keys = list(client.scan_iter(match=key))
                if keys:
                    client.delete(*keys)
            else:
                client.delete(key)
            return True
        except redis.RedisError:
            logger.exception("Cache invalidation error for %s", key)
            return False

    @classmethod
    def invalidate_multiple(cls, keys):
        results = [cls.invalidate(key) for key in keys]
        return all(results)
