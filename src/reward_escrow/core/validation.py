"""
Reward Escrow - Centralized Validation Utilities

Single source of truth for argument validation used by the escrow engine,
the reference token and the CLI import path.

This module provides:
- Address validation and normalization
- Amount validation (integer base units, positivity)
- Duration validation against a configurable cap
- Entry id list normalization

Validation failures raise the typed errors from ``core.exceptions``.
"""

from typing import Any, Iterable, List

from reward_escrow.core.constants import UINT256_MAX, ZERO_ADDRESS
from reward_escrow.core.exceptions import (
    InvalidAddressError,
    InvalidAmountError,
    InvalidDurationError,
    ValidationError,
)


def normalize_address(address: str) -> str:
    """
    Normalize an account address for use as a ledger key.

    Args:
        address: Address to normalize

    Returns:
        Stripped, lower-cased address

    Raises:
        InvalidAddressError: If the address is empty or not a string
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddressError("Address must be a non-empty string")
    return address.strip().lower()


def validate_beneficiary(address: str) -> str:
    """Normalize an address and reject the null account."""
    normalized = normalize_address(address)
    if normalized == ZERO_ADDRESS:
        raise InvalidAddressError("Cannot create escrow with address(0)")
    return normalized


def validate_amount(amount: Any, *, field_name: str = "Quantity") -> int:
    """
    Validate a token quantity in base units.

    Args:
        amount: Quantity to validate
        field_name: Name used in error messages

    Returns:
        The amount as an int

    Raises:
        InvalidAmountError: If amount is not a positive integer within uint256
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"{field_name} must be an integer number of base units")
    if amount == 0:
        raise InvalidAmountError(f"{field_name} cannot be zero")
    if amount < 0:
        raise InvalidAmountError(f"{field_name} cannot be negative")
    if amount > UINT256_MAX:
        raise InvalidAmountError(f"{field_name} exceeds uint256 range")
    return amount


def validate_duration(duration: Any, max_duration: int) -> int:
    """
    Validate an escrow duration in seconds.

    Raises:
        InvalidDurationError: If duration is not in (0, max_duration]
    """
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise InvalidDurationError("Duration must be an integer number of seconds")
    if duration <= 0 or duration > max_duration:
        raise InvalidDurationError("Cannot escrow with 0 duration OR above max_duration")
    return duration


def validate_timestamp(timestamp: Any, *, field_name: str = "timestamp") -> int:
    """Validate a non-negative integer Unix timestamp."""
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise ValidationError(f"{field_name} must be an integer Unix timestamp")
    if timestamp < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    return timestamp


def normalize_entry_ids(entry_ids: Iterable[Any]) -> List[int]:
    """
    Coerce a caller-supplied list of entry ids to ints.

    Order and duplicates are preserved; the engine treats duplicates as
    soft misses. Non-integer ids map to 0, which is never assigned.
    """
    normalized = []
    for entry_id in entry_ids:
        if isinstance(entry_id, bool):
            normalized.append(0)
            continue
        try:
            normalized.append(int(entry_id))
        except (TypeError, ValueError):
            normalized.append(0)
    return normalized
