"""
Dictionary-backed debt oracle.

Stands in for the external debt-check service consulted by account
merging; debt balances are set directly by the host or by tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class StaticDebtOracle:
    """Debt balances keyed by lower-cased address."""

    debts: Dict[str, int] = field(default_factory=dict)

    def set_debt(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Debt balance cannot be negative")
        self.debts[account.strip().lower()] = amount

    def debt_balance_of(self, account: str) -> int:
        return self.debts.get(account.strip().lower(), 0)
