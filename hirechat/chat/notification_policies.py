# =============================================================================
# File: hirechat/chat/notification_policies.py
# Description: Role-specific rules for rooms and notification counters
# =============================================================================

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Mapping

from hirechat.chat.ports.realtime_ports import RowStorePort
from hirechat.chat.value_objects import RowFilter
from hirechat.common.enums.enums import ApplicationStatus, HandshakeStatus, Table, UserRole

log = logging.getLogger("hirechat.chat.notification_policies")

VISIBLE_ROOM_STATUSES = (HandshakeStatus.PENDING.value, HandshakeStatus.ACCEPTED.value)


class NotificationPolicy(ABC):
    """
    Everything that differs between a manager and a seeker.

    Chosen once per ChatSession; the directory and the aggregator only talk
    to this interface.
    """

    role: UserRole
    # invitations column holding the viewer's id / the counterparty's id
    party_column: str
    counterparty_column: str
    # invitations column holding the viewer's own read marker
    read_marker_column: str
    partner_fallback_name: str

    def counterparty_id(self, invitation: Mapping[str, Any]) -> str:
        return str(invitation[self.counterparty_column])

    def room_filters(self, user_id: str) -> List[RowFilter]:
        """Invitations that make up the viewer's room list."""
        return [
            RowFilter.eq(self.party_column, user_id),
            RowFilter.in_("status", VISIBLE_ROOM_STATUSES),
        ]

    def pending_invitation_filters(self, user_id: str) -> List[RowFilter]:
        """Invitations counted by the invitations badge."""
        return [
            RowFilter.eq(self.party_column, user_id),
            RowFilter.eq("status", HandshakeStatus.PENDING.value),
        ]

    def unread_message_filters(self, user_id: str) -> List[RowFilter]:
        """Messages counted by the messages badge."""
        return [
            RowFilter.eq("is_read", False),
            RowFilter.eq("receiver_id", user_id),
            RowFilter.neq("sender_id", user_id),
        ]

    @abstractmethod
    async def count_applications(self, store: RowStorePort, user_id: str) -> int:
        """Applications badge value for the viewer."""
        raise NotImplementedError


class ManagerNotificationPolicy(NotificationPolicy):
    """Managers see new (pending) applications on their own projects."""

    role = UserRole.MANAGER
    party_column = "manager_id"
    counterparty_column = "seeker_id"
    read_marker_column = "manager_last_read_at"
    partner_fallback_name = "Candidate"

    async def count_applications(self, store: RowStorePort, user_id: str) -> int:
        projects = await store.select(
            Table.PROJECTS,
            [RowFilter.eq("manager_id", user_id)],
            columns=["id"],
        )
        project_ids = [str(row["id"]) for row in projects]
        if not project_ids:
            return 0
        return await store.count(
            Table.APPLICATIONS,
            [
                RowFilter.in_("project_id", project_ids),
                RowFilter.eq("status", ApplicationStatus.PENDING.value),
            ],
        )


class SeekerNotificationPolicy(NotificationPolicy):
    """Seekers see decisions (non-pending) on their own applications."""

    role = UserRole.SEEKER
    party_column = "seeker_id"
    counterparty_column = "manager_id"
    read_marker_column = "seeker_last_read_at"
    partner_fallback_name = "Project Manager"

    async def count_applications(self, store: RowStorePort, user_id: str) -> int:
        return await store.count(
            Table.APPLICATIONS,
            [
                RowFilter.eq("user_id", user_id),
                RowFilter.neq("status", ApplicationStatus.PENDING.value),
            ],
        )


def policy_for_role(role: UserRole) -> NotificationPolicy:
    if role == UserRole.MANAGER:
        return ManagerNotificationPolicy()
    return SeekerNotificationPolicy()
