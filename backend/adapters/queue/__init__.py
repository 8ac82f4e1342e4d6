"""
Queue adapters for Redis/arq.
"""
from adapters.queue.redis_client_adapter import (
    BaseError,
    CommandError,
    CompatClient,
    AsyncCompatClient,
    ConfigurationError,
    DeprecatedCommandWarning,
    DEPRECATED_COMMANDS,
    RedisClientAdapter,
)
from adapters.queue.redis import get_redis_pool, get_redis_settings, RedisSettings
from adapters.queue.jobs import enqueue_job, get_job_status

__all__ = [
    "BaseError",
    "CommandError",
    "CompatClient",
    "AsyncCompatClient",
    "ConfigurationError",
    "DeprecatedCommandWarning",
    "DEPRECATED_COMMANDS",
    "RedisClientAdapter",
    "get_redis_pool",
    "get_redis_settings",
    "RedisSettings",
    "enqueue_job",
    "get_job_status",
]
