import json

import redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging_config import get_logger

logger = get_logger()

# Every key this service writes lives under one namespace
KEY_PREFIX = "space-booking:"

_redis_client = None


def _connect():
    client = redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    client.ping()
    return client


def get_redis_client():
    """Shared client, or None when REDIS_URL is unset or the server is down."""
    global _redis_client

    if _redis_client is None and settings.redis_url:
        try:
            _redis_client = _connect()
            logger.info("Redis connected")
        except RedisError as e:
            logger.warning(f"Redis unavailable, running without cache and shared locks: {e}")
    return _redis_client


def namespaced(key: str) -> str:
    return f"{KEY_PREFIX}{key}"


# ---------------------------------------------------------
# JSON CACHE (misses and Redis errors both read as None)
# ---------------------------------------------------------
def get_cache(key: str):
    client = get_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(namespaced(key))
    except RedisError as e:
        logger.warning(f"Redis get failed for {key}: {e}")
        return None
    return json.loads(raw) if raw else None


def set_cache(key: str, value, ttl: int = 60):
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(namespaced(key), ttl, json.dumps(value, default=str))
    except RedisError as e:
        logger.warning(f"Redis set failed for {key}: {e}")


def delete_cache(key: str):
    client = get_redis_client()
    if client is None:
        return
    try:
        client.delete(namespaced(key))
    except RedisError as e:
        logger.warning(f"Redis delete failed for {key}: {e}")
