"""
Configuration management using pydantic-settings.
All settings are loaded from environment variables.
"""

import logging
import re
from functools import lru_cache
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Redis connection
    redis_url: str = "redis://localhost:6379/0"
    redis_id: Optional[str] = None  # CLIENT SETNAME
    redis_driver: Optional[str] = None  # hiredis | python
    redis_network_timeout: Optional[float] = None
    redis_reconnect_attempts: Optional[int] = None

    # Queue connection pool
    redis_size: int = 5
    redis_pool_timeout: float = 1.0

    # Sentinel: comma-separated host:port list, enables sentinel mode when set
    redis_sentinels: Optional[str] = None
    redis_master_name: Optional[str] = None
    redis_role: Optional[str] = None  # master | replica

    # Not supported by the client adapter, rejected at startup if set
    redis_namespace: Optional[str] = None

    log_level: str = "INFO"

    @property
    def redis_sentinels_list(self) -> list[str]:
        """Sentinel addresses, empty items ignored."""
        if not self.redis_sentinels:
            return []
        return [s.strip() for s in self.redis_sentinels.split(",") if s.strip()]

    @property
    def redis_options(self) -> dict[str, Any]:
        """
        Options mapping for the Redis client adapter.
        Unset values are left out so adapter defaults apply.
        """
        sentinels = self.redis_sentinels_list
        options: dict[str, Any] = {
            "size": self.redis_size,
            "pool_timeout": self.redis_pool_timeout,
            "network_timeout": self.redis_network_timeout,
            "reconnect_attempts": self.redis_reconnect_attempts,
            "driver": self.redis_driver,
            "id": self.redis_id,
            "namespace": self.redis_namespace,
        }

        if sentinels:
            options["sentinels"] = sentinels
            options["master_name"] = self.redis_master_name
            options["role"] = self.redis_role
            # Master credentials and db still come from the URL in sentinel mode
            parsed = urlparse(self.redis_url)
            options["username"] = parsed.username or None
            options["password"] = parsed.password or None
            options["db"] = int(parsed.path.lstrip("/") or 0)
        else:
            options["url"] = self.redis_url

        return {key: value for key, value in options.items() if value is not None}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def mask_secrets(text: str, settings: Settings = None) -> str:
    """
    Mask the Redis password in text to prevent leaking it in logs.
    """
    if settings is None:
        settings = get_settings()

    result = text

    password = urlparse(settings.redis_url).password
    if password and len(password) > 8:
        result = result.replace(password, f"{password[:2]}...{password[-2:]}")
    elif password:
        result = result.replace(password, "***")

    # Also mask any password in redis:// URLs
    result = re.sub(r'(rediss?://[^:@/\s]*:)[^@\s/]+@', r'\1***@', result)

    return result
