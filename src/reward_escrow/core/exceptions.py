"""
Escrow-specific exception hierarchy.

Provides typed exceptions for escrow operations so callers can tell a
rejected precondition apart from a failing collaborator, and so log
records carry consistent error context.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class EscrowError(Exception):
    """Base exception for all escrow errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(EscrowError):
    """Raised when an operation's preconditions are not met.

    The operation is aborted before any state is changed.
    """
    pass


class InvalidAmountError(ValidationError):
    """Raised when a quantity is zero, negative or not an integer."""
    pass


class InvalidDurationError(ValidationError):
    """Raised when a duration is zero or exceeds its configured cap."""
    pass


class InvalidAddressError(ValidationError):
    """Raised when an account address is empty or the null account."""
    pass


class InsufficientBalanceError(ValidationError):
    """Raised when custody does not hold enough un-escrowed tokens."""

    def __init__(
        self,
        message: str,
        required: Optional[int] = None,
        available: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.required = required
        self.available = available


class EntryNotFoundError(ValidationError):
    """Raised when a vesting entry is not owned by the queried account."""
    pass


# ==================== Authorization Errors ====================


class UnauthorizedError(EscrowError):
    """Raised when the caller lacks the role required by an operation."""
    pass


# ==================== Account Merging Errors ====================


class MergingError(EscrowError):
    """Base class for account-merging failures."""
    pass


class MergeWindowClosedError(MergingError):
    """Raised when merging is attempted while the window is not open.

    A window that was never opened and one that has expired are reported
    identically.
    """
    pass


class MergeWindowOpenError(MergingError):
    """Raised when an operation requires the merging window to be closed."""
    pass


class NotNominatedError(MergingError):
    """Raised when the caller is not the nominated merge destination."""
    pass


class OutstandingDebtError(MergingError):
    """Raised when a merging account still carries a debt balance."""
    pass


class SelfNominationError(MergingError):
    """Raised when an account nominates itself as merge destination."""
    pass


# ==================== Migration Errors ====================


class SetupExpiredError(EscrowError):
    """Raised when a setup-only operation is called after the setup period."""
    pass


# ==================== Collaborator Errors ====================


class TokenError(EscrowError):
    """Raised when a token operation fails (balance, allowance, address)."""
    pass


class CustodyTransferError(EscrowError):
    """Raised when the custody ledger fails to move tokens."""
    pass


# ==================== State & Configuration Errors ====================


class StateError(EscrowError):
    """Raised when escrow aggregates disagree with the entries they summarize."""
    pass


class ConfigurationError(EscrowError):
    """Raised when escrow configuration is missing or invalid."""
    pass


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the error is recoverable and the operation can be retried
    """
    if isinstance(exc, EscrowError):
        return exc.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    return isinstance(exc, recoverable_types)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, EscrowError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, InsufficientBalanceError):
        if exc.required is not None:
            context["required"] = exc.required
        if exc.available is not None:
            context["available"] = exc.available

    return context
