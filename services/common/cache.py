"""Async Redis client registry."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from .config import ServiceSettings

RedisType = Redis

_LOGGER = logging.getLogger(__name__)
_CLIENTS: dict[str, Redis] = {}


def get_redis_client(redis_url: str) -> Redis:
    """Return a shared Redis client for the given URL."""

    if redis_url not in _CLIENTS:
        _CLIENTS[redis_url] = Redis.from_url(redis_url, decode_responses=True)
    return _CLIENTS[redis_url]


def resolve_redis(settings: ServiceSettings) -> Redis | None:
    """Return a Redis client, or None when no cache is configured."""

    if not settings.redis_url:
        _LOGGER.info("No redis_url configured for %s; inventory cache mirror disabled", settings.app_name)
        return None
    return get_redis_client(settings.redis_url)


async def close_redis_connections() -> None:
    """Close all shared Redis clients (used for shutdown/tests)."""

    for client in _CLIENTS.values():
        await client.aclose()
    _CLIENTS.clear()
