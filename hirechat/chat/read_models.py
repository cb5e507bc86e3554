# =============================================================================
# File: hirechat/chat/read_models.py
# Description: Messaging core read models built from row store rows
# =============================================================================

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hirechat.chat.value_objects import RoomKey
from hirechat.common.enums.enums import HandshakeStatus
from hirechat.utils.datetime_utils import parse_timestamp_robust, utc_now
from hirechat.utils.uuid_utils import generate_provisional_id


def _id_to_str(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class Reaction(BaseModel):
    """One (reactor, emoji) pair stored in messages.reactions"""
    user_id: str
    emoji: str
    full_name: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    coerce_user_id = field_validator("user_id", mode="before")(_id_to_str)


class ChatMessage(BaseModel):
    """Read model for messages (row store table: messages)"""
    id: str
    project_id: str
    sender_id: str
    receiver_id: Optional[str] = None
    content: Optional[str] = None
    # Attachment
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    # State
    is_read: bool = False
    reactions: List[Reaction] = Field(default_factory=list)
    created_at: datetime
    # Client-only marker, never written to the store
    is_provisional: bool = Field(default=False, exclude=True)

    model_config = ConfigDict(extra="ignore")

    coerce_ids = field_validator(
        "id", "project_id", "sender_id", "receiver_id", mode="before"
    )(_id_to_str)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value: Any) -> datetime:
        return parse_timestamp_robust(value, fallback=utc_now())

    @field_validator("is_read", mode="before")
    @classmethod
    def _null_is_unread(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("reactions", mode="before")
    @classmethod
    def _parse_reactions(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, bytes)):
            return json.loads(value) or []
        return value

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'ChatMessage':
        """Build from a row store / change feed row."""
        return cls.model_validate(dict(row))

    @classmethod
    def provisional(
            cls,
            project_id: str,
            sender_id: str,
            receiver_id: Optional[str],
            content: Optional[str],
            file_type: Optional[str] = None,
            created_at: Optional[datetime] = None,
    ) -> 'ChatMessage':
        """Optimistic local copy shown before the store confirms the insert."""
        return cls(
            id=generate_provisional_id(),
            project_id=project_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            file_type=file_type,
            is_read=False,
            created_at=created_at or utc_now(),
            is_provisional=True,
        )

    def to_insert_row(self, file_url: Optional[str] = None) -> Dict[str, Any]:
        """Columns written on insert; id and created_at are assigned by the store."""
        return {
            "project_id": self.project_id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "content": self.content,
            "file_url": file_url if file_url is not None else self.file_url,
            "file_type": self.file_type,
            "is_read": False,
            "reactions": [],
        }

    def reactions_payload(self) -> List[Dict[str, Any]]:
        return [r.model_dump() for r in self.reactions]

    def with_reactions(self, reactions: List[Reaction]) -> 'ChatMessage':
        return self.model_copy(update={"reactions": list(reactions)})

    def is_authored_by(self, user_id: str) -> bool:
        return self.sender_id == user_id

    def is_between(self, first_id: str, second_id: str) -> bool:
        """True when the message was exchanged by exactly these two users."""
        return {self.sender_id, self.receiver_id} == {first_id, second_id}


class ChatRoom(BaseModel):
    """
    Read model for a chat room as seen by the viewer.

    Derived from one invitations row joined with projects (title) and
    profiles (partner identity); unread_count is computed per viewer.
    """
    project_id: str
    seeker_id: str
    manager_id: str
    counterparty_id: str
    status: HandshakeStatus = HandshakeStatus.PENDING
    last_read_at: Optional[datetime] = None
    project_title: str = ""
    partner_name: str = ""
    partner_avatar_url: Optional[str] = None
    unread_count: int = 0

    model_config = ConfigDict(extra="ignore")

    coerce_ids = field_validator(
        "project_id", "seeker_id", "manager_id", "counterparty_id", mode="before"
    )(_id_to_str)

    @field_validator("last_read_at", mode="before")
    @classmethod
    def _parse_last_read(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp_robust(value)

    @property
    def key(self) -> RoomKey:
        return RoomKey(self.project_id, self.counterparty_id)

    def channel_name(self, prefix: str = "room:") -> str:
        """Typing channel shared by both parties of the room."""
        return f"{prefix}{self.project_id}:{self.seeker_id}"


class NotificationCounters(BaseModel):
    """Unread badge counters for the current user"""
    messages: int = 0
    invitations: int = 0
    applications: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def total(self) -> int:
        return self.messages + self.invitations + self.applications


class ReactionSummary(BaseModel):
    """Aggregated reactions of one emoji on one message"""
    emoji: str
    count: int
    reactor_names: List[str] = Field(default_factory=list)
    viewer_reacted: bool = False
