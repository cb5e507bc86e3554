# =============================================================================
# File: hirechat/config/messaging_config.py
# Description: Realtime messaging core configuration (room sessions, typing,
#              attachments, notification aggregation)
# =============================================================================

from functools import lru_cache

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from hirechat.common.base.base_config import BaseConfig


class MessagingConfig(BaseConfig):
    """
    Messaging Core Configuration

    Usage:
        from hirechat.config.messaging_config import get_messaging_config

        config = get_messaging_config()
        limit = config.history_limit
    """

    model_config = SettingsConfigDict(
        env_prefix='CHAT_',
        validate_assignment=True,
    )

    # =========================================================================
    # Room Session
    # =========================================================================

    history_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Most recent messages loaded when a room opens (older history is not paginated)"
    )

    # =========================================================================
    # Typing Signal
    # =========================================================================

    typing_idle_seconds: float = Field(
        default=2.0,
        gt=0,
        le=10.0,
        description="Idle interval after the last keystroke before typing=false is broadcast"
    )

    partner_typing_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Partner typing indicator auto-expires after N seconds without a refresh"
    )

    typing_channel_prefix: str = Field(
        default="room:",
        description="Broadcast channel prefix for typing signals"
    )

    # =========================================================================
    # Attachments
    # =========================================================================

    max_attachment_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10MB
        ge=1024,
        description="Attachments larger than this are rejected before upload"
    )

    attachment_bucket: str = Field(
        default="chat-attachments",
        description="Object storage bucket (path prefix) for chat attachments"
    )

    # =========================================================================
    # Change Feed
    # =========================================================================

    seen_event_window: int = Field(
        default=1000,
        ge=10,
        le=100000,
        description="Message ids remembered for at-least-once dedup of unread increments"
    )


@lru_cache(maxsize=1)
def get_messaging_config() -> MessagingConfig:
    """Get messaging configuration singleton (cached)."""
    return MessagingConfig()


def reset_messaging_config() -> None:
    """Reset config singleton (for testing)."""
    get_messaging_config.cache_clear()
