# =============================================================================
# File: hirechat/chat/session.py
# Description: Explicit per-user session object passed to messaging components
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from hirechat.chat.notification_policies import NotificationPolicy, policy_for_role
from hirechat.common.enums.enums import UserRole


@dataclass(frozen=True)
class ChatSession:
    """
    Authenticated viewer identity.

    Built once at login by the host application and handed to the room
    directory, room sessions and the notification aggregator. The role
    policy is resolved here so no component branches on role itself.
    """
    user_id: str
    role: UserRole
    full_name: Optional[str] = None
    policy: NotificationPolicy = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        role = self.role if isinstance(self.role, UserRole) else UserRole.parse(self.role)
        object.__setattr__(self, "role", role)
        object.__setattr__(self, "user_id", str(self.user_id))
        object.__setattr__(self, "policy", policy_for_role(role))

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @property
    def display_name(self) -> str:
        return self.full_name or "Unknown"
