import redis

from fintrack.core.config import settings

# Shared Redis client (created on first use, reused by the API and the worker)
_redis: redis.Redis | None = None


def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


_RECURRING_LOCK_PREFIX = "recurring_lock:"


def recurring_lock_key(recurring_id: str) -> str:
    """Redis key guarding one recurring definition while it is processed."""
    return f"{_RECURRING_LOCK_PREFIX}{recurring_id}"
