# =============================================================================
# File: hirechat/config/redis_config.py
# Description: Redis connection settings for the typing broadcast channel
# =============================================================================

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import SettingsConfigDict

from hirechat.common.base.base_config import BaseConfig


class RedisConfig(BaseConfig):
    """Redis Pub/Sub settings (env prefix REDIS_)"""

    model_config = SettingsConfigDict(
        env_prefix='REDIS_',
    )

    url: SecretStr = Field(
        default=SecretStr("redis://localhost:6379/0"),
        description="Redis connection URL"
    )

    channel_prefix: str = Field(
        default="hirechat:",
        description="Namespace prefix added to every broadcast channel"
    )

    listener_poll_timeout: float = Field(
        default=1.0,
        gt=0,
        le=30.0,
        description="get_message() timeout for listener loops in seconds"
    )

    reconnect_delay: float = Field(
        default=1.0,
        gt=0,
        le=60.0,
        description="Base delay before a listener retries after a Redis error"
    )

    max_reconnect_delay: float = Field(
        default=30.0,
        gt=0,
        le=300.0,
        description="Upper bound for listener backoff"
    )


@lru_cache(maxsize=1)
def get_redis_config() -> RedisConfig:
    """Get Redis configuration singleton (cached)."""
    return RedisConfig()


def reset_redis_config() -> None:
    """Reset config singleton (for testing)."""
    get_redis_config.cache_clear()
