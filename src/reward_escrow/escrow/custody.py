"""
Custody adapter binding an ERC20 token to the escrow's own address.

Implements the ``ICustodyLedger`` protocol the engine consumes: the escrow
only ever moves tokens out of, or pulls approved tokens into, its own
balance.
"""

from __future__ import annotations

import logging

from reward_escrow.contracts.erc20 import ERC20Token
from reward_escrow.core.exceptions import CustodyTransferError, TokenError

logger = logging.getLogger(__name__)


class TokenCustody:
    """Custody ledger backed by an ``ERC20Token`` balance."""

    def __init__(self, token: ERC20Token, escrow_address: str) -> None:
        self.token = token
        self.escrow_address = escrow_address.strip().lower()

    def balance(self) -> int:
        return self.token.balance_of(self.escrow_address)

    def transfer(self, to: str, amount: int) -> bool:
        """
        Send ``amount`` from custody to ``to``.

        Raises:
            CustodyTransferError: If the token rejects the transfer
        """
        try:
            return self.token.transfer(self.escrow_address, to, amount)
        except TokenError as exc:
            logger.error(
                "Custody transfer failed",
                extra={
                    "event": "custody.transfer_failed",
                    "to": to[:10],
                    "amount": amount,
                    "error": str(exc),
                },
            )
            raise CustodyTransferError(f"token transfer failed: {exc}") from exc

    def transfer_from(self, from_account: str, amount: int) -> bool:
        """
        Pull ``amount`` approved by ``from_account`` into custody.

        Raises:
            CustodyTransferError: If allowance or balance is insufficient
        """
        try:
            return self.token.transfer_from(
                self.escrow_address, from_account, self.escrow_address, amount
            )
        except TokenError as exc:
            logger.error(
                "Custody pull failed",
                extra={
                    "event": "custody.transfer_from_failed",
                    "from": from_account[:10],
                    "amount": amount,
                    "error": str(exc),
                },
            )
            raise CustodyTransferError(f"token transfer failed: {exc}") from exc
