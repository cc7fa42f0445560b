"""
Domain Exceptions - Custom exceptions for domain-specific errors.
"""
from typing import Any, Dict, Optional


class DomainException(Exception):
    """
    Base exception for all domain-related errors.

    All domain exceptions should inherit from this class to allow
    for consistent error handling across the application.
    """

    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class UnknownSupplierException(DomainException):
    """Raised when a supplier name is not registered."""

    status_code = 404

    def __init__(self, supplier: str):
        self.supplier = supplier
        super().__init__(
            message=f"Unknown supplier '{supplier}'",
            code='UNKNOWN_SUPPLIER',
            details={'supplier': supplier}
        )


class SupplierModeException(DomainException):
    """Raised when a supplier is addressed through the wrong channel."""

    status_code = 405

    def __init__(self, supplier: str, mode: str, message: Optional[str] = None):
        self.supplier = supplier
        self.mode = mode
        super().__init__(
            message=message or f"{supplier} does not support webhooks",
            code='UNSUPPORTED_SUPPLIER_MODE',
            details={'supplier': supplier, 'mode': mode}
        )


class ConfigurationException(DomainException):
    """
    Raised when supplier or tenant configuration is missing or invalid.

    These need operator action and are never retried.
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code='CONFIGURATION_ERROR',
            details=details
        )


class InvalidStatusTransitionException(DomainException):
    """Raised when a delivery status change leaves the allowed graph."""

    status_code = 409

    def __init__(
        self,
        current_status: str,
        target_status: str,
        message: Optional[str] = None
    ):
        msg = message or f"Cannot transition delivery from '{current_status}' to '{target_status}'"
        super().__init__(
            message=msg,
            code='INVALID_STATE_TRANSITION',
            details={
                'current_state': current_status,
                'target_state': target_status
            }
        )


class SupplierFetchException(DomainException):
    """Raised when a vendor API page cannot be retrieved."""

    status_code = 502

    def __init__(
        self,
        supplier: str,
        resource: str,
        message: str,
        status: Optional[int] = None
    ):
        self.supplier = supplier
        self.resource = resource
        self.status = status
        super().__init__(
            message=message,
            code='SUPPLIER_FETCH_FAILED',
            details={'supplier': supplier, 'resource': resource, 'status': status}
        )
