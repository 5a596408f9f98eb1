from collections.abc import AsyncIterator

from redis.asyncio import Redis

from formbridge.core.config import get_settings
from formbridge.core.logging import get_logger

logger = get_logger(__name__)


async def get_redis_client() -> AsyncIterator[Redis | None]:
    settings = get_settings()
    if not settings.use_redis_locks:
        yield None
        return

    client = Redis.from_url(settings.redis_url)
    try:
        await client.ping()
    except Exception as exc:  # pragma: no cover - redis optional in tests
        logger.warning("redis.unavailable", error=str(exc))
        await client.aclose()
        yield None
        return

    try:
        yield client
    finally:
        await client.aclose()
