# =============================================================================
# File: hirechat/common/base/base_config.py
# Description: BaseConfig - foundation for all HireChat configuration classes
#
# Pydantic v2 settings:
# - SettingsConfigDict (not the deprecated class Config)
# - Automatic .env file loading
# - Case-insensitive environment variables
# - Nested config support via __ delimiter
# - SecretStr for sensitive values
# - @lru_cache singleton pattern for factory functions
#
# Usage:
#     from hirechat.common.base.base_config import BaseConfig
#     from pydantic_settings import SettingsConfigDict
#     from functools import lru_cache
#
#     class MyConfig(BaseConfig):
#         # Parent settings (.env, case, extra) are merged in by pydantic
#         model_config = SettingsConfigDict(env_prefix="MY_")
#         timeout_ms: int = 5000
#
#     @lru_cache(maxsize=1)
#     def get_my_config() -> MyConfig:
#         return MyConfig()
# =============================================================================

from typing import Any, Dict

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class for all HireChat configs.

    Environment Variable Naming:
    - Use concern-specific prefixes (CHAT_, REDIS_, PG_, STORAGE_)
    - Nested values use __ delimiter (e.g., PG__POOL__MAX_SIZE)

    Secrets Handling:
    - Sensitive fields (DSNs with passwords, URLs with tokens) use SecretStr
    - Access raw value via .get_secret_value() when needed
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Convert config to dictionary.

        Args:
            mask_secrets: If True (default), SecretStr values are masked.

        Returns:
            Dictionary representation of the config.
        """
        if mask_secrets:
            return self.model_dump()
        data = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, SecretStr):
                data[field_name] = value.get_secret_value()
            else:
                data[field_name] = value
        return data

    def __repr__(self) -> str:
        """Safe repr that masks secrets."""
        class_name = self.__class__.__name__
        fields = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, SecretStr):
                fields.append(f"{field_name}=SecretStr('**********')")
            else:
                fields.append(f"{field_name}={value!r}")
        return f"{class_name}({', '.join(fields)})"
