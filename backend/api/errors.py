from __future__ import annotations

from typing import Any

from fastapi import status


class MarketplaceError(Exception):
    """Base class for errors surfaced to API clients as ``{"error": ...}``."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientFundsError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient balance: {required} required, {available} available")
        self.required = required
        self.available = available

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, "required": self.required, "available": self.available}


class UnauthorizedError(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransitionError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT


class AlreadyFinalizedError(MarketplaceError):
    """Raised when a settlement has already produced its transaction.

    Callers treat it as a successful no-op.
    """

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, transaction: Any) -> None:
        super().__init__("Trade offer is already finalized")
        self.transaction = transaction
