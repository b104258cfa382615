import redis.asyncio as redis
from typing import Optional
from app.config import settings
import logging

logger = logging.getLogger(__name__)

# Celery uses the same Redis as its broker; the API only needs it for health checks
redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
	"""Get (lazily create) the shared Redis client"""
	global redis_client

	if redis_client is None:
		redis_client = redis.Redis.from_url(
			settings.REDIS_URL,
			max_connections=settings.REDIS_POOL_SIZE,
			decode_responses=True,
			socket_connect_timeout=2,
			socket_timeout=2,
		)
	return redis_client


async def close_redis():
	"""Close Redis connections"""
	global redis_client

	if redis_client is not None:
		await redis_client.aclose()
		redis_client = None
		logger.info("Redis connections closed")


async def check_redis_connection() -> bool:
	"""Check if the broker Redis answers a PING"""
	try:
		client = await get_redis()
		return bool(await client.ping())
	except Exception as e:
		logger.error(f"Redis health check failed: {e}")
		return False
