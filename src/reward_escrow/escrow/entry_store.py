"""
Vesting entry store.

Entries live in a single arena keyed by a globally unique, monotonically
increasing id. A secondary per-account index keeps each account's owned
ids in creation order together with the account's aggregate balances.

Invariants maintained by every mutation:
- total_escrowed_balance == sum(entry.remaining_amount for all entries)
- account.total_escrowed == sum(remaining_amount over the account's entries)
- 0 <= remaining_amount <= escrow_amount

Mutations made inside ``atomic()`` are journaled and undone if the block
raises, so an operation that fails half-way leaves no trace.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional

from reward_escrow.core.constants import FIRST_ENTRY_ID
from reward_escrow.core.exceptions import (
    InvalidAmountError,
    InvalidDurationError,
    StateError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class VestingEntry:
    """A single linear vesting grant."""

    entry_id: int
    end_time: int
    escrow_amount: int
    remaining_amount: int
    duration: int
    last_vested: int = 0

    @property
    def start_time(self) -> int:
        """Creation time of the grant."""
        return self.end_time - self.duration

    @property
    def vested_amount(self) -> int:
        return self.escrow_amount - self.remaining_amount

    @property
    def is_fully_vested(self) -> bool:
        return self.remaining_amount == 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VestingEntry":
        return cls(
            entry_id=int(data["entry_id"]),
            end_time=int(data["end_time"]),
            escrow_amount=int(data["escrow_amount"]),
            remaining_amount=int(data["remaining_amount"]),
            duration=int(data["duration"]),
            last_vested=int(data.get("last_vested", 0)),
        )


@dataclass
class AccountLedger:
    """Per-account index of owned entries and running balances."""

    entry_ids: List[int] = field(default_factory=list)
    total_escrowed: int = 0
    total_vested: int = 0


class EntryStore:
    """
    Arena of vesting entries with per-account indexes.

    The store performs no value movement and no authorization; callers
    validate inputs before mutating.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, VestingEntry] = {}
        self._owners: Dict[int, str] = {}
        self._accounts: Dict[str, AccountLedger] = {}
        self.total_escrowed_balance = 0
        self.next_entry_id = FIRST_ENTRY_ID
        self._journal: Optional[List[Callable[[], None]]] = None

    # ==================== Atomicity ====================

    @contextmanager
    def atomic(self) -> Iterator["EntryStore"]:
        """
        Run a block of mutations all-or-nothing.

        Nested blocks join the outermost one.
        """
        if self._journal is not None:
            yield self
            return

        self._journal = []
        try:
            yield self
        except BaseException:
            undo_steps = self._journal
            self._journal = None
            for undo in reversed(undo_steps):
                undo()
            logger.warning(
                "Entry store changes rolled back",
                extra={"event": "entry_store.rolled_back", "steps": len(undo_steps)},
            )
            raise
        else:
            self._journal = None

    def _record(self, undo: Callable[[], None]) -> None:
        if self._journal is not None:
            self._journal.append(undo)

    def _ledger(self, owner: str) -> AccountLedger:
        ledger = self._accounts.get(owner)
        if ledger is None:
            ledger = AccountLedger()
            self._accounts[owner] = ledger
        return ledger

    # ==================== Mutations ====================

    def create_entry(
        self,
        owner: str,
        amount: int,
        duration: int,
        now: int,
        end_time: Optional[int] = None,
    ) -> int:
        """
        Create a new entry owned by ``owner``.

        Args:
            owner: Normalized account address
            amount: Escrowed quantity (> 0)
            duration: Vesting period in seconds (> 0)
            now: Creation time
            end_time: Explicit end time for imported grants; defaults to now + duration

        Returns:
            The new entry id
        """
        if amount <= 0:
            raise InvalidAmountError("Quantity cannot be zero")
        if duration <= 0:
            raise InvalidDurationError("Cannot escrow with 0 duration OR above max_duration")

        entry_id = self.next_entry_id
        entry = VestingEntry(
            entry_id=entry_id,
            end_time=now + duration if end_time is None else end_time,
            escrow_amount=amount,
            remaining_amount=amount,
            duration=duration,
        )
        new_account = owner not in self._accounts
        ledger = self._ledger(owner)

        self._entries[entry_id] = entry
        self._owners[entry_id] = owner
        ledger.entry_ids.append(entry_id)
        ledger.total_escrowed += amount
        self.total_escrowed_balance += amount
        self.next_entry_id = entry_id + 1

        def undo() -> None:
            del self._entries[entry_id]
            del self._owners[entry_id]
            ledger.entry_ids.pop()
            ledger.total_escrowed -= amount
            self.total_escrowed_balance -= amount
            self.next_entry_id = entry_id
            if new_account:
                del self._accounts[owner]

        self._record(undo)
        return entry_id

    def reduce_remaining(
        self,
        owner: str,
        entry_id: int,
        amount: int,
        now: int,
        *,
        credit_vested: bool = True,
    ) -> None:
        """
        Lower an entry's remaining amount and the matching aggregates.

        Args:
            owner: Account that owns the entry
            entry_id: Entry to reduce
            amount: Quantity released from escrow
            now: Time recorded as ``last_vested``
            credit_vested: Count the amount towards the owner's vested balance

        Raises:
            StateError: If the entry is not owned by ``owner`` or would go negative
        """
        entry = self._require_owned(owner, entry_id)
        if amount < 0 or amount > entry.remaining_amount:
            raise StateError(
                f"Cannot reduce entry {entry_id} by {amount}; remaining {entry.remaining_amount}",
                details={"entry_id": entry_id, "amount": amount},
            )

        ledger = self._accounts[owner]
        previous_last_vested = entry.last_vested
        vested_credit = amount if credit_vested else 0

        entry.remaining_amount -= amount
        entry.last_vested = now
        ledger.total_escrowed -= amount
        ledger.total_vested += vested_credit
        self.total_escrowed_balance -= amount

        def undo() -> None:
            entry.remaining_amount += amount
            entry.last_vested = previous_last_vested
            ledger.total_escrowed += amount
            ledger.total_vested -= vested_credit
            self.total_escrowed_balance += amount

        self._record(undo)

    def reassign_owner(self, from_owner: str, to_owner: str, entry_id: int) -> int:
        """
        Move an entry to another account.

        The entry is removed from the source sequence (remaining order kept)
        and appended to the destination sequence. Escrowed balances move with
        the entry's remaining amount; vested history stays with the source.

        Returns:
            The remaining amount that moved
        """
        entry = self._require_owned(from_owner, entry_id)
        source = self._accounts[from_owner]
        new_account = to_owner not in self._accounts
        destination = self._ledger(to_owner)
        moved = entry.remaining_amount
        position = source.entry_ids.index(entry_id)

        source.entry_ids.pop(position)
        source.total_escrowed -= moved
        destination.entry_ids.append(entry_id)
        destination.total_escrowed += moved
        self._owners[entry_id] = to_owner

        def undo() -> None:
            destination.entry_ids.pop()
            destination.total_escrowed -= moved
            source.entry_ids.insert(position, entry_id)
            source.total_escrowed += moved
            self._owners[entry_id] = from_owner
            if new_account:
                del self._accounts[to_owner]

        self._record(undo)
        return moved

    # ==================== Views ====================

    def get_entry(self, owner: str, entry_id: int) -> Optional[VestingEntry]:
        """Return a copy of the entry if ``owner`` owns it, else None."""
        if self._owners.get(entry_id) != owner:
            return None
        return replace(self._entries[entry_id])

    def owner_of(self, entry_id: int) -> Optional[str]:
        return self._owners.get(entry_id)

    def num_entries(self, owner: str) -> int:
        ledger = self._accounts.get(owner)
        return len(ledger.entry_ids) if ledger else 0

    def entry_id_at(self, owner: str, index: int) -> int:
        """
        Entry id at ``index`` in the owner's creation-ordered sequence.

        Raises:
            IndexError: If index is out of range
        """
        ledger = self._accounts.get(owner)
        if ledger is None or not 0 <= index < len(ledger.entry_ids):
            raise IndexError(f"Account has no vesting entry at index {index}")
        return ledger.entry_ids[index]

    def entry_ids(self, owner: str, index: int = 0, page_size: Optional[int] = None) -> List[int]:
        """
        Page of the owner's entry ids starting at ``index``.

        Raises:
            ValidationError: If ``index`` or ``page_size`` is negative
        """
        if index < 0:
            raise ValidationError(f"Page index cannot be negative: {index}")
        if page_size is not None and page_size < 0:
            raise ValidationError(f"Page size cannot be negative: {page_size}")

        ledger = self._accounts.get(owner)
        if ledger is None:
            return []
        end = None if page_size is None else index + page_size
        return list(ledger.entry_ids[index:end])

    def total_escrowed_account_balance(self, owner: str) -> int:
        ledger = self._accounts.get(owner)
        return ledger.total_escrowed if ledger else 0

    def total_vested_account_balance(self, owner: str) -> int:
        ledger = self._accounts.get(owner)
        return ledger.total_vested if ledger else 0

    def accounts(self) -> List[str]:
        return list(self._accounts)

    def __len__(self) -> int:
        return len(self._entries)

    def verify_conservation(self) -> None:
        """
        Check that every aggregate equals the sum of the entries it covers.

        Raises:
            StateError: On the first mismatch found
        """
        grand_total = 0
        for owner, ledger in self._accounts.items():
            account_total = 0
            for entry_id in ledger.entry_ids:
                if self._owners.get(entry_id) != owner:
                    raise StateError(f"Entry {entry_id} indexed under {owner} but owned elsewhere")
                entry = self._entries[entry_id]
                if not 0 <= entry.remaining_amount <= entry.escrow_amount:
                    raise StateError(f"Entry {entry_id} remaining amount out of range")
                account_total += entry.remaining_amount
            if account_total != ledger.total_escrowed:
                raise StateError(
                    f"Escrowed balance mismatch for {owner}",
                    details={"recorded": ledger.total_escrowed, "computed": account_total},
                )
            grand_total += account_total

        entries_total = sum(entry.remaining_amount for entry in self._entries.values())
        if grand_total != entries_total or entries_total != self.total_escrowed_balance:
            raise StateError(
                "Total escrowed balance mismatch",
                details={"recorded": self.total_escrowed_balance, "computed": entries_total},
            )

    def _require_owned(self, owner: str, entry_id: int) -> VestingEntry:
        if self._owners.get(entry_id) != owner:
            raise StateError(f"Entry {entry_id} is not owned by {owner}")
        return self._entries[entry_id]

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_entry_id": self.next_entry_id,
            "total_escrowed_balance": self.total_escrowed_balance,
            "entries": [
                dict(entry.to_dict(), owner=self._owners[entry_id])
                for entry_id, entry in sorted(self._entries.items())
            ],
            "accounts": {
                owner: {
                    "entry_ids": list(ledger.entry_ids),
                    "total_escrowed": ledger.total_escrowed,
                    "total_vested": ledger.total_vested,
                }
                for owner, ledger in self._accounts.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntryStore":
        store = cls()
        for raw in data.get("entries", []):
            entry = VestingEntry.from_dict(raw)
            store._entries[entry.entry_id] = entry
            store._owners[entry.entry_id] = raw["owner"]
        for owner, raw in data.get("accounts", {}).items():
            store._accounts[owner] = AccountLedger(
                entry_ids=[int(entry_id) for entry_id in raw.get("entry_ids", [])],
                total_escrowed=int(raw.get("total_escrowed", 0)),
                total_vested=int(raw.get("total_vested", 0)),
            )
        store.total_escrowed_balance = int(data.get("total_escrowed_balance", 0))
        store.next_entry_id = int(data.get("next_entry_id", FIRST_ENTRY_ID))
        store.verify_conservation()
        return store
