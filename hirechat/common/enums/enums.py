# =============================================================================
# File: hirechat/common/enums/enums.py
# Description: Common enumerations shared by the marketplace tables
# =============================================================================

from enum import Enum, StrEnum


class UserRole(str, Enum):
    """Marketplace roles"""
    MANAGER = "manager"
    SEEKER = "seeker"

    @classmethod
    def parse(cls, value: str) -> "UserRole":
        """Case-insensitive lookup ("Manager" and "manager" are the same role)."""
        return cls(value.strip().lower())


class HandshakeStatus(str, Enum):
    """Invitation/handshake status (invitations.status)"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ApplicationStatus(str, Enum):
    """Application status (applications.status)"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Table(StrEnum):
    """Row store tables consumed by the messaging core"""
    MESSAGES = "messages"
    INVITATIONS = "invitations"
    APPLICATIONS = "applications"
    PROJECTS = "projects"
    PROFILES = "profiles"
