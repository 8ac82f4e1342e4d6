"""
Redis client adapter for the job queue.

Translates the loosely-typed options mapping used across the queue
(``size``, ``network_timeout``, ``master_name``, ...) into redis-py
connection settings, and wraps the resulting client so call sites written
against the old ``conn.hmset(...)`` style keep working.

Everything below the option mapping (protocol, pooling, retries, sentinel
discovery) is redis-py's job.
"""

import logging
import warnings
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import redis
import redis.asyncio
import redis.asyncio.sentinel
import redis.sentinel
# redis-py 5 only exports the parser classes from this private module
from redis._parsers import (
    _AsyncHiredisParser,
    _AsyncRESP2Parser,
    _HiredisParser,
    _RESP2Parser,
)
from redis.asyncio.retry import Retry as AsyncRetry
from redis.backoff import AbstractBackoff, NoBackoff
from redis.retry import Retry
from redis.utils import HIREDIS_AVAILABLE

logger = logging.getLogger(__name__)

BaseError = redis.exceptions.RedisError
CommandError = redis.exceptions.ResponseError

# Add/remove items or clear the whole set to silence deprecation warnings.
DEPRECATED_COMMANDS = {
    "rpoplpush",
    "zrangebyscore",
    "zrevrange",
    "zrevrangebyscore",
    "getset",
    "hmset",
    "setex",
    "setnx",
}

DEFAULT_SENTINEL_PORT = 26379

CLIENT_OPTIONS = frozenset({
    "url",
    "host",
    "port",
    "db",
    "username",
    "password",
    "ssl",
    "id",
    "timeout",
    "connect_timeout",
    "read_timeout",
    "write_timeout",
    "reconnect_attempts",
    "driver",
})

SENTINEL_OPTIONS = CLIENT_OPTIONS | {
    "sentinels",
    "name",
    "role",
    "sentinel_username",
    "sentinel_password",
}

DRIVERS = {"hiredis", "python"}
ROLES = {"master", "replica", "slave"}


class ConfigurationError(ValueError):
    """Raised when the Redis options cannot be turned into a client config."""


class DeprecatedCommandWarning(UserWarning):
    """Emitted when a call site uses a command Redis has deprecated."""


def client_opts(options: Optional[Mapping[str, Any]]) -> dict:
    """
    Translate queue-level Redis options into client options.

    The input mapping is left untouched.

    Raises:
        ConfigurationError: if a key namespace is configured
    """
    opts = {str(key): value for key, value in (options or {}).items()}

    if opts.get("namespace"):
        raise ConfigurationError(
            f"Your Redis configuration uses the namespace '{opts['namespace']}' "
            "but this feature isn't supported by the Redis client adapter. "
            "Remove the namespace."
        )
    opts.pop("namespace", None)

    # Pool options, consumed by the queue's connection factory
    opts.pop("size", None)
    opts.pop("pool_timeout", None)

    network_timeout = opts.pop("network_timeout", None)
    if network_timeout:
        opts["timeout"] = network_timeout

    if opts.get("driver"):
        opts["driver"] = str(opts["driver"]).lower()

    if "master_name" in opts:
        opts["name"] = opts.pop("master_name")
    if "role" in opts:
        opts["role"] = str(opts["role"]).lower()
    if "sentinels" in opts:
        opts.pop("url", None)

    # redis-py retries silently on a dropped connection. A retried LPUSH
    # can duplicate a job, but that is far rarer than the reconnect fixing
    # a transient failure, so one attempt stays on by default.
    if opts.get("reconnect_attempts") is None or opts["reconnect_attempts"] is False:
        opts["reconnect_attempts"] = 1

    return opts


class DelayScheduleBackoff(AbstractBackoff):
    """Backoff that sleeps the n-th configured delay before the n-th retry."""

    def __init__(self, delays):
        self._delays = tuple(float(d) for d in delays)

    def reset(self):
        pass

    def compute(self, failures):
        if not self._delays:
            return 0
        return self._delays[min(failures, len(self._delays)) - 1]


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


class RedisClientConfig:
    """Connection settings for a single Redis server."""

    allowed_options = CLIENT_OPTIONS

    def __init__(self, **options):
        unknown = sorted(set(options) - self.allowed_options)
        if unknown:
            raise ConfigurationError(f"Unknown Redis option(s): {', '.join(unknown)}")

        self.options = options
        self.url: Optional[str] = options.get("url")
        self.host: Optional[str] = options.get("host")
        self.port: Optional[int] = options.get("port")
        self.db: Optional[int] = options.get("db")
        self.username: Optional[str] = options.get("username")
        self.password: Optional[str] = options.get("password")
        self.ssl = bool(options.get("ssl", False))
        self.id: Optional[str] = options.get("id")
        self.driver: Optional[str] = options.get("driver")
        self.reconnect_attempts = self._validate_reconnect_attempts(
            options.get("reconnect_attempts", 1)
        )

        timeout = options.get("timeout")
        self.connect_timeout = _first_set(options.get("connect_timeout"), timeout)
        self.read_timeout = _first_set(
            options.get("read_timeout"), options.get("write_timeout"), timeout
        )

        if self.driver is not None and self.driver not in DRIVERS:
            raise ConfigurationError(
                f"Unknown Redis driver '{self.driver}', expected one of: "
                f"{', '.join(sorted(DRIVERS))}"
            )
        if self.driver == "hiredis" and not HIREDIS_AVAILABLE:
            raise ConfigurationError(
                "Redis driver 'hiredis' requested but the hiredis package is not installed"
            )

    @staticmethod
    def _validate_reconnect_attempts(value):
        if isinstance(value, bool):
            raise ConfigurationError(f"Invalid reconnect_attempts: {value!r}")
        if isinstance(value, int):
            if value < 0:
                raise ConfigurationError(f"reconnect_attempts must be >= 0, got {value}")
            return value
        if isinstance(value, (list, tuple)):
            for delay in value:
                if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
                    raise ConfigurationError(f"Invalid reconnect delay: {delay!r}")
            return list(value)
        raise ConfigurationError(f"Invalid reconnect_attempts: {value!r}")

    @property
    def retries(self) -> int:
        """Number of reconnect attempts, whatever form they were given in."""
        if isinstance(self.reconnect_attempts, list):
            return len(self.reconnect_attempts)
        return self.reconnect_attempts

    def _backoff(self) -> AbstractBackoff:
        if isinstance(self.reconnect_attempts, list):
            return DelayScheduleBackoff(self.reconnect_attempts)
        return NoBackoff()

    def _parser_class(self, asyncio: bool):
        if self.driver == "hiredis":
            return _AsyncHiredisParser if asyncio else _HiredisParser
        if self.driver == "python":
            return _AsyncRESP2Parser if asyncio else _RESP2Parser
        return None

    def connection_kwargs(self, asyncio: bool = False) -> dict:
        """Keyword arguments for a redis-py connection (pool)."""
        retry_class = AsyncRetry if asyncio else Retry
        kwargs = {
            "username": self.username,
            "password": self.password,
            "socket_timeout": self.read_timeout,
            "socket_connect_timeout": self.connect_timeout,
            "client_name": self.id,
            "retry": retry_class(self._backoff(), self.retries),
        }
        if self.retries > 0:
            # Without retry_on_error redis-py re-raises on a dropped connection
            kwargs["retry_on_error"] = [
                redis.exceptions.ConnectionError,
                redis.exceptions.TimeoutError,
            ]
        if self.url is None:
            kwargs["host"] = self.host or "localhost"
            kwargs["port"] = self.port or 6379
            kwargs["db"] = self.db or 0
        elif self.db is not None:
            kwargs["db"] = self.db

        parser_class = self._parser_class(asyncio)
        if parser_class is not None:
            kwargs["parser_class"] = parser_class

        return {key: value for key, value in kwargs.items() if value is not None}

    def _pool(self, asyncio, max_connections, pool_timeout):
        module = redis.asyncio if asyncio else redis
        kwargs = self.connection_kwargs(asyncio=asyncio)
        if self.ssl:
            kwargs["connection_class"] = (
                redis.asyncio.connection.SSLConnection if asyncio else redis.connection.SSLConnection
            )
        if max_connections is not None:
            kwargs["max_connections"] = max_connections

        if pool_timeout is not None:
            pool_class = module.BlockingConnectionPool
            kwargs["timeout"] = pool_timeout
        else:
            pool_class = module.ConnectionPool

        if self.url:
            return pool_class.from_url(self.url, **kwargs)
        return pool_class(**kwargs)

    def new_client(self, max_connections: Optional[int] = None, pool_timeout: Optional[float] = None) -> redis.Redis:
        """Build a sync redis-py client. Nothing connects until the first command."""
        pool = self._pool(False, max_connections, pool_timeout)
        return redis.Redis(connection_pool=pool)

    def new_async_client(self, max_connections: Optional[int] = None, pool_timeout: Optional[float] = None) -> redis.asyncio.Redis:
        """Build an asyncio redis-py client."""
        pool = self._pool(True, max_connections, pool_timeout)
        return redis.asyncio.Redis.from_pool(pool)

    def __repr__(self):
        target = self.url or f"{self.host or 'localhost'}:{self.port or 6379}"
        return f"<{type(self).__name__} {target}>"


def parse_sentinel(entry) -> tuple[str, int]:
    """Normalize one sentinel entry to a ``(host, port)`` pair."""
    if isinstance(entry, Mapping):
        host = entry.get("host")
        port = entry.get("port") or DEFAULT_SENTINEL_PORT
    elif isinstance(entry, (list, tuple)) and len(entry) == 2:
        host, port = entry
    elif isinstance(entry, str):
        if "://" in entry:
            parsed = urlparse(entry)
            host, port = parsed.hostname, parsed.port or DEFAULT_SENTINEL_PORT
        else:
            host, _, port = entry.rpartition(":") if ":" in entry else (entry, "", "")
            port = port or DEFAULT_SENTINEL_PORT
    else:
        raise ConfigurationError(f"Invalid sentinel entry: {entry!r}")

    if not host:
        raise ConfigurationError(f"Sentinel entry without host: {entry!r}")
    try:
        return str(host), int(port)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid sentinel port in {entry!r}") from None


class SentinelConfig(RedisClientConfig):
    """Connection settings for a master or replica discovered through Sentinel."""

    allowed_options = SENTINEL_OPTIONS

    def __init__(self, **options):
        super().__init__(**options)

        sentinels = options.get("sentinels") or []
        if not sentinels:
            raise ConfigurationError("At least one sentinel is required")
        self.sentinels = [parse_sentinel(entry) for entry in sentinels]

        self.name: Optional[str] = options.get("name")
        if not self.name:
            raise ConfigurationError("Sentinel configuration requires a master name")

        self.role = options.get("role") or "master"
        if self.role not in ROLES:
            raise ConfigurationError(
                f"Unknown Redis role '{self.role}', expected one of: {', '.join(sorted(ROLES))}"
            )

        self.sentinel_username: Optional[str] = options.get("sentinel_username")
        self.sentinel_password: Optional[str] = options.get("sentinel_password")

    @property
    def is_master(self) -> bool:
        return self.role == "master"

    def sentinel_kwargs(self) -> dict:
        kwargs = {
            "username": self.sentinel_username,
            "password": self.sentinel_password,
            "socket_timeout": self.read_timeout,
            "socket_connect_timeout": self.connect_timeout,
        }
        return {key: value for key, value in kwargs.items() if value is not None}

    def _discover(self, sentinel_class, asyncio, max_connections, pool_timeout):
        kwargs = self.connection_kwargs(asyncio=asyncio)
        for key in ("host", "port"):
            kwargs.pop(key, None)
        if self.ssl:
            kwargs["ssl"] = True
        if max_connections is not None:
            kwargs["max_connections"] = max_connections
        if pool_timeout is not None:
            logger.debug("pool_timeout is not supported for Sentinel pools, ignoring")

        sentinel = sentinel_class(self.sentinels, sentinel_kwargs=self.sentinel_kwargs())
        if self.is_master:
            return sentinel.master_for(self.name, **kwargs)
        return sentinel.slave_for(self.name, **kwargs)

    def new_client(self, max_connections: Optional[int] = None, pool_timeout: Optional[float] = None) -> redis.Redis:
        return self._discover(redis.sentinel.Sentinel, False, max_connections, pool_timeout)

    def new_async_client(self, max_connections: Optional[int] = None, pool_timeout: Optional[float] = None) -> redis.asyncio.Redis:
        return self._discover(redis.asyncio.sentinel.Sentinel, True, max_connections, pool_timeout)

    def __repr__(self):
        hosts = ",".join(f"{host}:{port}" for host, port in self.sentinels)
        return f"<{type(self).__name__} {self.name} ({self.role}) via {hosts}>"


def parse_info(reply) -> dict[str, str]:
    """Flatten an INFO reply, raw or already parsed, to ``{key: value}`` strings."""
    if isinstance(reply, bytes):
        reply = reply.decode("utf-8", errors="replace")
    if isinstance(reply, str):
        pairs = (line.split(":", 1) for line in reply.splitlines())
        return {pair[0]: pair[1] for pair in pairs if len(pair) == 2}

    result = {}
    for key, value in reply.items():
        if isinstance(value, dict):
            value = ",".join(f"{k}={v}" for k, v in value.items())
        result[str(key)] = str(value)
    return result


class _CommandForwarding:
    """
    Lets call sites write ``conn.hmset(key, field, value)`` instead of
    ``conn.execute_command("HMSET", key, field, value)``.
    """

    _client: Any

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        command_name = name.upper()
        deprecated = name.lower() in DEPRECATED_COMMANDS

        def command(*args, **options):
            if deprecated:
                warnings.warn(
                    f"Redis has deprecated the `{name}` command",
                    DeprecatedCommandWarning,
                    stacklevel=2,
                )
            return self._client.execute_command(command_name, *args, **options)

        command.__name__ = name
        return command

    def evalsha(self, sha, keys, argv):
        return self._client.execute_command("EVALSHA", sha, len(keys), *keys, *argv)


class CompatPipeline(_CommandForwarding):
    """Pipeline (or MULTI transaction) with the same calling conventions."""

    def __init__(self, pipeline):
        self._client = pipeline

    def execute(self, raise_on_error=True):
        return self._client.execute(raise_on_error=raise_on_error)

    def reset(self):
        self._client.reset()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()
        return False


class CompatClient(_CommandForwarding):
    """Sync redis-py client wrapped with the legacy command-calling surface."""

    def __init__(self, client: redis.Redis, config: RedisClientConfig):
        self._client = client
        self._config = config

    @property
    def client(self) -> redis.Redis:
        return self._client

    @property
    def config(self) -> RedisClientConfig:
        return self._config

    def info(self) -> dict[str, str]:
        return parse_info(self._client.execute_command("INFO"))

    def pipeline(self, transaction: bool = False) -> CompatPipeline:
        return CompatPipeline(self._client.pipeline(transaction=transaction))

    def multi(self) -> CompatPipeline:
        return self.pipeline(transaction=True)

    def close(self):
        self._client.close()
        self._client.connection_pool.disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self):
        return f"<CompatClient {self._config!r}>"


class AsyncCompatPipeline(_CommandForwarding):
    def __init__(self, pipeline):
        self._client = pipeline

    async def execute(self, raise_on_error=True):
        return await self._client.execute(raise_on_error=raise_on_error)

    async def reset(self):
        await self._client.reset()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.reset()
        return False


class AsyncCompatClient(_CommandForwarding):
    """asyncio counterpart of :class:`CompatClient`; forwarded commands return awaitables."""

    def __init__(self, client: redis.asyncio.Redis, config: RedisClientConfig):
        self._client = client
        self._config = config

    @property
    def client(self) -> redis.asyncio.Redis:
        return self._client

    @property
    def config(self) -> RedisClientConfig:
        return self._config

    async def info(self) -> dict[str, str]:
        return parse_info(await self._client.execute_command("INFO"))

    async def evalsha(self, sha, keys, argv):
        return await self._client.execute_command("EVALSHA", sha, len(keys), *keys, *argv)

    def pipeline(self, transaction: bool = False) -> AsyncCompatPipeline:
        return AsyncCompatPipeline(self._client.pipeline(transaction=transaction))

    def multi(self) -> AsyncCompatPipeline:
        return self.pipeline(transaction=True)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def __repr__(self):
        return f"<AsyncCompatClient {self._config!r}>"


class RedisClientAdapter:
    """
    Builds compat-wrapped redis-py clients from queue options.

    Options are validated once, here; ``new_client`` can then be called
    for every connection the queue needs.
    """

    def __init__(self, options: Optional[Mapping[str, Any]] = None):
        opts = client_opts(options)
        if "sentinels" in opts:
            self._config = SentinelConfig(**opts)
        else:
            self._config = RedisClientConfig(**opts)

    @property
    def config(self) -> RedisClientConfig:
        return self._config

    def new_client(self, max_connections: Optional[int] = None, pool_timeout: Optional[float] = None) -> CompatClient:
        client = self._config.new_client(max_connections=max_connections, pool_timeout=pool_timeout)
        return CompatClient(client, self._config)

    def new_async_client(self, max_connections: Optional[int] = None, pool_timeout: Optional[float] = None) -> AsyncCompatClient:
        client = self._config.new_async_client(max_connections=max_connections, pool_timeout=pool_timeout)
        return AsyncCompatClient(client, self._config)
