"""
In-memory reward token backing the escrow's custody ledger.

The escrow only talks to custody through ``balance``/``transfer``/
``transfer_from`` (see ``escrow.custody``); this token supplies those
balances for tests, the CLI state file and simulations. It supports owner
minting, transfers, allowances and a Transfer/Approval event log.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from reward_escrow.core.constants import UINT256_MAX, ZERO_ADDRESS
from reward_escrow.core.exceptions import TokenError

logger = logging.getLogger(__name__)


def _key(address: str) -> str:
    return address.strip().lower()


@dataclass
class TokenEvent:
    """A Transfer or Approval record."""

    event_type: str
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC20Token:
    """
    Reward token ledger keyed by lower-cased address.

    Every failing call raises TokenError before any balance or allowance
    changes.
    """

    name: str
    symbol: str
    owner: str = ""
    address: str = ""
    decimals: int = 18
    total_supply: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)
    events: List[TokenEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.address:
            digest = hashlib.sha3_256(f"{self.name}:{self.symbol}".encode()).digest()
            self.address = "0x" + digest[-20:].hex()
        self.address = _key(self.address)
        self.owner = _key(self.owner) if self.owner else ""

    def balance_of(self, account: str) -> int:
        return self.balances.get(_key(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(_key(owner), {}).get(_key(spender), 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` from ``sender`` to ``recipient``.

        Raises:
            TokenError: On a zero recipient, a bad amount or a short balance
        """
        self._move(_key(sender), _key(recipient), amount)
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """Set ``spender``'s allowance over ``owner``'s balance to ``amount``."""
        spender_key = _key(spender)
        self._check_recipient(spender_key, "spender")
        self._check_amount(amount)

        self.allowances.setdefault(_key(owner), {})[spender_key] = amount
        self.events.append(TokenEvent("Approval", _key(owner), spender_key, amount))
        return True

    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> bool:
        """
        Move tokens out of ``from_addr`` against ``spender``'s allowance.

        An allowance of ``UINT256_MAX`` is treated as unlimited and is not
        spent down.

        Raises:
            TokenError: If the allowance or the balance is too low
        """
        source = _key(from_addr)
        spender_key = _key(spender)
        self._check_amount(amount)

        allowed = self.allowance(source, spender_key)
        if allowed < amount:
            raise TokenError(f"ERC20: insufficient allowance ({allowed} < {amount})")

        self._move(source, _key(to_addr), amount)
        if allowed != UINT256_MAX:
            self.allowances[source][spender_key] = allowed - amount
        return True

    def mint(self, minter: str, to: str, amount: int) -> bool:
        """
        Create ``amount`` new tokens for ``to``.

        Raises:
            TokenError: If ``minter`` is not the token owner
        """
        if not self.owner or _key(minter) != self.owner:
            raise TokenError("ERC20: caller is not owner")
        recipient = _key(to)
        self._check_recipient(recipient, "recipient")
        self._check_amount(amount)
        if self.total_supply + amount > UINT256_MAX:
            raise TokenError("ERC20: total supply exceeds uint256")

        self.total_supply += amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.events.append(TokenEvent("Transfer", ZERO_ADDRESS, recipient, amount))

        logger.info(
            "Reward token minted",
            extra={
                "event": "token.minted",
                "token": self.symbol,
                "to": recipient[:10],
                "amount": amount,
                "total_supply": self.total_supply,
            },
        )
        return True

    def _move(self, source: str, recipient: str, amount: int) -> None:
        self._check_recipient(recipient, "recipient")
        self._check_amount(amount)

        available = self.balances.get(source, 0)
        if available < amount:
            raise TokenError(f"ERC20: transfer amount exceeds balance ({amount} > {available})")

        self.balances[source] = available - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.events.append(TokenEvent("Transfer", source, recipient, amount))

        logger.debug(
            "Reward token transfer",
            extra={
                "event": "token.transfer",
                "token": self.symbol,
                "from": source[:10],
                "to": recipient[:10],
                "amount": amount,
            },
        )

    @staticmethod
    def _check_recipient(address: str, role: str) -> None:
        if not address or address == ZERO_ADDRESS:
            raise TokenError(f"ERC20: {role} is zero address")

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TokenError("ERC20: amount must be an integer")
        if not 0 <= amount <= UINT256_MAX:
            raise TokenError("ERC20: amount out of uint256 range")

    def to_dict(self) -> Dict[str, Any]:
        """Balances and allowances for the escrow state file; the event log is not kept."""
        return {
            "name": self.name,
            "symbol": self.symbol,
            "owner": self.owner,
            "address": self.address,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "balances": dict(self.balances),
            "allowances": {owner: dict(spenders) for owner, spenders in self.allowances.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ERC20Token":
        return cls(
            name=data["name"],
            symbol=data["symbol"],
            owner=data.get("owner", ""),
            address=data.get("address", ""),
            decimals=data.get("decimals", 18),
            total_supply=data.get("total_supply", 0),
            balances=dict(data.get("balances", {})),
            allowances={owner: dict(spenders) for owner, spenders in data.get("allowances", {}).items()},
        )
