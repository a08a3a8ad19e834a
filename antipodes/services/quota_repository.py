from datetime import datetime, timezone
from typing import Optional, Tuple

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)

# KEYS[1] counter, ARGV[1] limit, ARGV[2] ttl -> {allowed, remaining}
CONSUME_SCRIPT = """
local current = redis.call('GET', KEYS[1])
local limit = tonumber(ARGV[1])
if current == false then
  redis.call('SET', KEYS[1], 1, 'EX', tonumber(ARGV[2]))
  return {1, limit - 1}
end
if tonumber(current) >= limit then
  return {0, 0}
end
local count = redis.call('INCR', KEYS[1])
return {1, limit - count}
"""

class QuotaUnavailableError(RuntimeError):
    """Redis could not be reached; enforcement fails closed."""

def daily_quota_key(session_id: str, now: Optional[datetime] = None) -> str:
    day = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    return f"geocode_actions:{day}:{session_id}"

class QuotaRepository:
    """
    Per-client daily budget of actions that reach Nominatim.

    Nominatim's public instance allows roughly one request per second per
    application; this caps what a single browser session can spend.
    """

    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis_client: Optional[Redis] = redis_client

    async def check_and_consume(self, key: str, daily_limit: int, ttl: int = 86400) -> Tuple[bool, int]:
        """Atomically take one unit; returns (allowed, remaining)."""
        if not self.redis_client:
            raise QuotaUnavailableError("redis_unavailable")
        try:
            result = await self.redis_client.eval(CONSUME_SCRIPT, 1, key, daily_limit, ttl)
        except Exception as e:
            logger.error("quota_consume_error", error=str(e), key=key)
            raise QuotaUnavailableError("redis_unavailable") from e
        allowed, remaining = int(result[0]) == 1, int(result[1])
        if not allowed:
            logger.info("quota_exhausted", key=key, limit=daily_limit)
        return allowed, remaining
