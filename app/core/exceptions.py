"""Error taxonomy shared by application intake and notification delivery."""

from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base class for domain errors surfaced to callers."""

    code = "MARKETPLACE_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class NotFoundError(MarketplaceError):
    """Missing project, student or application."""

    code = "NOT_FOUND"


class ValidationError(MarketplaceError):
    """Business rule violation (unpublished project, capacity, rejection reason)."""

    code = "VALIDATION_ERROR"


class ConflictError(MarketplaceError):
    """Duplicate application, or a concurrent writer won the slot."""

    code = "CONFLICT"


class ForbiddenError(MarketplaceError):
    """Actor does not own the project."""

    code = "FORBIDDEN"


class TransientError(MarketplaceError):
    """Lock wait, transaction duration or serialization abort. Safe to retry."""

    code = "TRANSIENT"


class DeliveryFailure(MarketplaceError):
    """A single delivery attempt failed. Never raised outside the queue."""

    code = "DELIVERY_FAILURE"
