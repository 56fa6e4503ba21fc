"""
Reward Escrow - Collaborator Protocol Interfaces

Protocol interfaces for the services the escrow engine consumes but does
not implement. Using Protocol (from typing) allows structural subtyping:
- Mock implementations in tests without inheritance
- Dependency injection of real ledgers and oracles
- Clear API contracts at the engine boundary
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

TimeProvider = Callable[[], int]


@runtime_checkable
class ICustodyLedger(Protocol):
    """
    Value movement in and out of the escrow's custody.

    Implementations either return False or raise when a movement fails;
    the engine treats both as aborting the enclosing operation.
    """

    def balance(self) -> int:
        """
        Tokens currently held by the escrow.

        Returns:
            Balance in base units
        """
        ...

    def transfer(self, to: str, amount: int) -> bool:
        """
        Send tokens from custody to an account.

        Args:
            to: Recipient address
            amount: Amount in base units

        Returns:
            True if the tokens moved
        """
        ...

    def transfer_from(self, from_account: str, amount: int) -> bool:
        """
        Pull previously approved tokens from an account into custody.

        Args:
            from_account: Address that approved the escrow as spender
            amount: Amount in base units

        Returns:
            True if the tokens moved
        """
        ...


@runtime_checkable
class IDebtOracle(Protocol):
    """Reports outstanding debt; consulted only by account merging."""

    def debt_balance_of(self, account: str) -> int:
        """
        Get the debt balance of an account.

        Args:
            account: Address to query

        Returns:
            Debt in base units (0 when the account has no debt)
        """
        ...
