# =============================================================================
# File: hirechat/chat/exceptions.py
# Description: Messaging core exceptions
# =============================================================================

from hirechat.common.exceptions.exceptions import (
    DomainError,
    HireChatException,
    ResourceNotFoundError,
)


class ChatError(DomainError):
    """Base exception for the messaging core"""
    pass


class RoomNotFoundError(ResourceNotFoundError):
    """Room not present in the directory"""
    def __init__(self, project_id: str, counterparty_id: str):
        super().__init__(f"Room not found: project={project_id} counterparty={counterparty_id}")
        self.project_id = project_id
        self.counterparty_id = counterparty_id


class InvalidStatusTransitionError(ChatError):
    """Handshake status can only move from pending to accepted or declined"""
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move handshake from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class SessionClosedError(ChatError):
    """Operation attempted on a room session that is not live"""
    def __init__(self, operation: str):
        super().__init__(f"Room session is closed, cannot {operation}")
        self.operation = operation


class UnsupportedFilterError(HireChatException):
    """Row filter references an unknown table, column or operator"""
    pass
