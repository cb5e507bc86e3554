# =============================================================================
# File: hirechat/common/exceptions/exceptions.py
# Description: Custom exceptions for HireChat
# =============================================================================


class HireChatException(Exception):
    """Base exception for HireChat"""
    pass


class NotFoundError(HireChatException):
    """Raised when a resource is not found"""
    pass


# Alias for compatibility
ResourceNotFoundError = NotFoundError


class DomainError(HireChatException):
    """Raised for domain-specific errors"""
    pass


class InfrastructureError(HireChatException):
    """Raised for infrastructure errors"""
    pass


class RowStoreError(InfrastructureError):
    """Row store read or write failed"""
    pass


class ChangeFeedError(InfrastructureError):
    """Change feed or broadcast subscription failed"""
    pass


class StorageError(InfrastructureError):
    """Object storage upload failed"""
    pass
