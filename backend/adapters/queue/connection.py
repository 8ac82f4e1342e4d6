"""
Connection factory for the job queue.

Pool sizing (``size``, ``pool_timeout``) belongs here; everything else in
the options mapping is handed to the client adapter.
"""

import logging
import re
from typing import Any, Mapping, Optional

from adapters.queue.redis_client_adapter import (
    AsyncCompatClient,
    CompatClient,
    RedisClientAdapter,
)
from app.settings import get_settings

logger = logging.getLogger(__name__)

REDACTED = "REDACTED"

_URL_PASSWORD = re.compile(r"(?P<prefix>[a-z][a-z0-9+.-]*://[^:@/]*:)(?P<password>[^@/]+)(?=@)", re.IGNORECASE)


def _scrub_url(url: str) -> str:
    return _URL_PASSWORD.sub(lambda m: m.group("prefix") + REDACTED, url)


def scrub(options: Mapping[str, Any]) -> dict:
    """
    Copy of ``options`` that is safe to log.
    Passwords, including the ones inside URLs and sentinel entries, are redacted.
    """
    scrubbed = {str(key): value for key, value in options.items()}

    for key in ("password", "sentinel_password"):
        if scrubbed.get(key):
            scrubbed[key] = REDACTED

    if isinstance(scrubbed.get("url"), str):
        scrubbed["url"] = _scrub_url(scrubbed["url"])

    if scrubbed.get("sentinels"):
        sentinels = []
        for entry in scrubbed["sentinels"]:
            if isinstance(entry, Mapping):
                entry = dict(entry)
                if entry.get("password"):
                    entry["password"] = REDACTED
            elif isinstance(entry, str):
                entry = _scrub_url(entry)
            sentinels.append(entry)
        scrubbed["sentinels"] = sentinels

    return scrubbed


def _pool_options(options: Optional[Mapping[str, Any]]):
    settings = get_settings()
    if options is None:
        options = settings.redis_options

    size = options.get("size") or settings.redis_size
    pool_timeout = options.get("pool_timeout")
    if pool_timeout is None:
        pool_timeout = settings.redis_pool_timeout

    return options, size, pool_timeout


def create(options: Optional[Mapping[str, Any]] = None) -> CompatClient:
    """
    Create a sync Redis client for the queue.

    Args:
        options: Redis options; defaults to the ones built from settings.

    Returns:
        CompatClient backed by a pool of at most ``size`` connections.
    """
    options, size, pool_timeout = _pool_options(options)
    logger.info(f"Connecting to Redis with options {scrub(options)}")

    adapter = RedisClientAdapter(options)
    return adapter.new_client(max_connections=size, pool_timeout=pool_timeout)


def create_async(options: Optional[Mapping[str, Any]] = None) -> AsyncCompatClient:
    """asyncio variant of :func:`create`."""
    options, size, pool_timeout = _pool_options(options)
    logger.info(f"Connecting to Redis (asyncio) with options {scrub(options)}")

    adapter = RedisClientAdapter(options)
    return adapter.new_async_client(max_connections=size, pool_timeout=pool_timeout)
