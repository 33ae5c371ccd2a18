from typing import Optional, Dict, Any


class SpendwiseException(Exception):
    """Base exception for Spendwise backend."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidRequestError(SpendwiseException):
    """Raised when caller input is rejected before any store access."""

    pass


class InvalidPeriodError(InvalidRequestError):
    """Raised when a period specifier cannot be resolved to a window."""

    pass


class InvalidTrendQueryError(InvalidRequestError):
    """Raised when monthly trend parameters are out of range."""

    pass


class ResourceNotFoundError(SpendwiseException):
    """Raised when a requested resource is not found."""

    pass
