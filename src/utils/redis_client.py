"""
Shared async Redis client.

Redis is only used for best-effort signalling (dispatcher wake-up and worker
heartbeats); the queue itself lives in the database.
"""
_redis_client = None

DISPATCH_NOTIFY_KEY = "eventrelay:dispatch_notify"
HEARTBEAT_KEY_PREFIX = "eventrelay:worker_health:"


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from src.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client
