# =============================================================================
# File: hirechat/chat/enums.py
# Description: Messaging core enumerations
# =============================================================================

from enum import Enum


class RoomSessionState(str, Enum):
    """Lifecycle of an active room session"""
    CLOSED = "closed"
    LOADING = "loading"
    LIVE = "live"


class ChangeOperation(str, Enum):
    """Row-level change kinds delivered by the change feed"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class FilterOp(str, Enum):
    """Row predicate operators supported by the row store and change feed"""
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"


class NoticeLevel(str, Enum):
    """Severity of a user-visible notice"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
