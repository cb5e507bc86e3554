# =============================================================================
# File: hirechat/config/storage_config.py
# Description: Local object storage settings (development adapter)
# =============================================================================

from functools import lru_cache

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from hirechat.common.base.base_config import BaseConfig


class StorageConfig(BaseConfig):
    """Object storage settings (env prefix STORAGE_)"""

    model_config = SettingsConfigDict(
        env_prefix='STORAGE_',
    )

    base_path: str = Field(
        default="storage",
        description="Directory where uploaded attachments are written"
    )

    base_url: str = Field(
        default="/static/storage",
        description="Public URL prefix the files are served under"
    )


@lru_cache(maxsize=1)
def get_storage_config() -> StorageConfig:
    """Get storage configuration singleton (cached)."""
    return StorageConfig()


def reset_storage_config() -> None:
    """Reset config singleton (for testing)."""
    get_storage_config.cache_clear()
