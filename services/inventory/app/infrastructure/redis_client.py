from functools import lru_cache
import redis
from app.core_settings import get_settings

@lru_cache
def get_redis() -> redis.Redis:
    # Connecting is lazy; the first command surfaces an unreachable server
    return redis.from_url(get_settings().REDIS_URL, decode_responses=True)
