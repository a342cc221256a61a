"""
Custom exception classes for the application.
Provides structured error handling across the settlement pipeline.
"""

from typing import Any, Optional, Dict


class KissmintException(Exception):
    """Base exception class for the Kissmint backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(KissmintException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(KissmintException):
    """Raised when a durable write or read fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(KissmintException):
    """Raised when data validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(KissmintException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class AuthenticationError(KissmintException):
    """Raised when authentication fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class ExternalServiceError(KissmintException):
    """Raised when an external service error occurs."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "EXTERNAL_SERVICE_ERROR", details)


class LedgerError(KissmintException):
    """Raised when a prize pool ledger operation fails. Safe to retry."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LEDGER_ERROR", details)


class LeaderboardError(KissmintException):
    """Raised when the live leaderboard store cannot be read or written."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LEADERBOARD_ERROR", details)


class ArchiveError(KissmintException):
    """Raised when a leaderboard could not be archived."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "ARCHIVE_ERROR", details)


class PayoutError(ExternalServiceError):
    """Raised when a token transfer fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "PAYOUT_ERROR"


# Settlement-specific exceptions
class SettlementInProgressError(KissmintException):
    """Raised when another settlement holds the lock for the same period."""

    def __init__(self, pool_type: str, period_identifier: str):
        super().__init__(
            f"Settlement already in progress for {pool_type} period {period_identifier}",
            "SETTLEMENT_IN_PROGRESS",
            {"pool_type": pool_type, "period_identifier": period_identifier}
        )


class DistributionNotFoundError(NotFoundError):
    """Raised when a distribution summary is not found."""

    def __init__(self, summary_id: str):
        super().__init__(
            f"Distribution not found: {summary_id}",
            {"summary_id": summary_id}
        )


class DistributionNotRetryableError(ValidationError):
    """Raised when a retry is requested for a distribution that did not fail."""

    def __init__(self, summary_id: str, status: str):
        super().__init__(
            "Only failed distributions can be retried",
            {"summary_id": summary_id, "status": status}
        )


class DuplicatePurchaseError(ValidationError):
    """Raised when revenue for a purchase was already allocated."""

    def __init__(self, purchase_id: str):
        super().__init__(
            f"Revenue already allocated for purchase {purchase_id}",
            {"purchase_id": purchase_id}
        )
