"""
Redis connection and settings for arq queue.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Any, Mapping, Optional

from arq.connections import RedisSettings as ArqRedisSettings

from adapters.queue import connection
from adapters.queue.redis_client_adapter import (
    AsyncCompatClient,
    RedisClientAdapter,
    SentinelConfig,
)
from app.settings import get_settings, mask_secrets

logger = logging.getLogger(__name__)

# Module-level pool cache
_redis_pool: Optional[AsyncCompatClient] = None


def get_redis_settings(options: Optional[Mapping[str, Any]] = None) -> ArqRedisSettings:
    """
    Get Redis settings for arq.

    Options go through the same translation as every other queue
    connection, so arq and the compat clients agree on timeouts, retries
    and sentinel topology.
    """
    if options is None:
        options = get_settings().redis_options
    config = RedisClientAdapter(options).config

    if isinstance(config, SentinelConfig):
        if not config.is_master or config.sentinel_password:
            logger.warning(
                f"arq connects to the Sentinel master without sentinel auth; "
                f"ignoring role={config.role}, sentinel_password set={bool(config.sentinel_password)}"
            )
        settings = ArqRedisSettings(
            host=list(config.sentinels),
            sentinel=True,
            sentinel_master=config.name,
        )
    elif config.url:
        settings = ArqRedisSettings.from_dsn(config.url)
    else:
        settings = ArqRedisSettings(
            host=config.host or "localhost",
            port=config.port or 6379,
            database=config.db or 0,
        )

    overrides = {
        "username": config.username,
        "password": config.password,
        "conn_timeout": config.connect_timeout,
        "max_connections": options.get("size"),
    }
    if config.db is not None:
        overrides["database"] = config.db
    if config.ssl:
        overrides["ssl"] = True
    overrides["conn_retries"] = config.retries
    if isinstance(config.reconnect_attempts, list) and config.reconnect_attempts:
        overrides["conn_retry_delay"] = max(config.reconnect_attempts)

    return dataclasses.replace(
        settings,
        **{key: value for key, value in overrides.items() if value is not None},
    )


async def get_redis_pool(max_retries: int = 5, retry_delay: float = 1.0) -> AsyncCompatClient:
    """
    Get async Redis client.
    Lazy initialization, cached at module level.

    Retries the first PING because Redis may come up slightly after the
    worker under supervisord.
    """
    global _redis_pool

    if _redis_pool is None:
        for attempt in range(max_retries):
            pool = connection.create_async()
            try:
                # Test connection
                await pool.ping()
                _redis_pool = pool
                logger.info(f"Redis pool created: {pool.config!r}")
                break
            except Exception as e:
                await pool.close()
                error = mask_secrets(str(e))
                if attempt < max_retries - 1:
                    logger.warning(f"Redis connection attempt {attempt + 1} failed, retrying in {retry_delay}s: {error}")
                    await asyncio.sleep(retry_delay)
                else:
                    logger.error(f"Redis connection failed after {max_retries} attempts: {error}")
                    raise

    return _redis_pool


async def close_redis_pool():
    """Close Redis pool on shutdown."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None
        logger.info("Redis pool closed")


async def redis_healthcheck() -> dict:
    """
    Check Redis connectivity.

    Returns:
        dict with 'ok' bool, 'latency_ms' float and 'redis_version'
    """
    try:
        pool = await get_redis_pool(max_retries=1)
        start = time.monotonic()
        await pool.ping()
        latency = (time.monotonic() - start) * 1000
        info = await pool.info()

        return {
            "ok": True,
            "latency_ms": round(latency, 2),
            "redis_version": info.get("redis_version"),
        }
    except Exception as e:
        error = mask_secrets(str(e))
        logger.warning(f"Redis healthcheck failed: {error}")
        return {"ok": False, "error": error}


# Re-export for convenience
RedisSettings = ArqRedisSettings
