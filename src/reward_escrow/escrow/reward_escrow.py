"""
Reward escrow engine.

Holds tokens on behalf of many accounts and releases them linearly over
per-entry schedules. Operations:
- Vesting: anyone may vest any account's entries; tokens always go to
  the account that owns them
- Issuance: issuer-role grants backed by un-escrowed custody balance, and
  self-funded grants pulled from the caller by approval
- Migration: owner-only bulk import during the setup period and
  bridge-role burning of entries for migration to another ledger
- Account merging: owner-controlled window in which a debt-free account
  can hand its entries to a nominated account

Every public operation runs under one re-entrant lock. Store mutations are
journaled so a collaborator failure (custody transfer, debt oracle) rolls
the whole operation back, and balances are always updated before tokens
leave custody.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Tuple

from reward_escrow.core.constants import (
    DEFAULT_ACCOUNT_MERGING_DURATION,
    DEFAULT_MAX_ACCOUNT_MERGING_DURATION,
    DEFAULT_MAX_ESCROW_DURATION,
    DEFAULT_PAGE_SIZE,
    DEFAULT_SETUP_DURATION,
)
from reward_escrow.core.exceptions import (
    ConfigurationError,
    CustodyTransferError,
    EntryNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidDurationError,
    NotNominatedError,
    OutstandingDebtError,
    SelfNominationError,
    SetupExpiredError,
)
from reward_escrow.core.protocols import ICustodyLedger, IDebtOracle, TimeProvider
from reward_escrow.core.validation import (
    normalize_address,
    normalize_entry_ids,
    validate_amount,
    validate_beneficiary,
    validate_duration,
)
from reward_escrow.escrow import rates
from reward_escrow.escrow.access_control import Caller, Role, RoleBasedAccessControl, requires_role
from reward_escrow.escrow.entry_store import EntryStore, VestingEntry
from reward_escrow.escrow.events import (
    AccountMerged,
    AccountMergingDurationUpdated,
    AccountMergingStarted,
    BurnedForMigration,
    EventBus,
    MaxEscrowDurationUpdated,
    NominateAccountToMerge,
    Vested,
    VestingEntriesImported,
    VestingEntryCreated,
)
from reward_escrow.escrow.merging import AccountMergingWindow
from reward_escrow.escrow.schemas import ImportRecord

logger = logging.getLogger(__name__)


def synchronized(func):
    """Run the wrapped method while holding the escrow lock."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return func(self, *args, **kwargs)
    return wrapper


class RewardEscrow:
    """Time-based token escrow with linear per-entry vesting."""

    def __init__(
        self,
        custody: ICustodyLedger,
        access_control: RoleBasedAccessControl,
        debt_oracle: IDebtOracle | None = None,
        *,
        time_provider: TimeProvider | None = None,
        max_escrow_duration: int = DEFAULT_MAX_ESCROW_DURATION,
        account_merging_duration: int = DEFAULT_ACCOUNT_MERGING_DURATION,
        max_account_merging_duration: int = DEFAULT_MAX_ACCOUNT_MERGING_DURATION,
        setup_duration: int = DEFAULT_SETUP_DURATION,
        store: EntryStore | None = None,
        merging_window: AccountMergingWindow | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.custody = custody
        self.access_control = access_control
        self.debt_oracle = debt_oracle
        self._time_provider = time_provider or (lambda: int(time.time()))
        self._lock = threading.RLock()

        if isinstance(max_escrow_duration, bool) or not isinstance(max_escrow_duration, int) \
                or max_escrow_duration <= 0:
            raise InvalidDurationError("Max escrow duration must be a positive integer")
        self.max_escrow_duration = max_escrow_duration

        self.store = store if store is not None else EntryStore()
        self.merging = merging_window if merging_window is not None else AccountMergingWindow(
            account_merging_duration=account_merging_duration,
            max_account_merging_duration=max_account_merging_duration,
        )
        self.events = event_bus if event_bus is not None else EventBus()
        self.setup_expiry_time = self._current_time() + setup_duration

        logger.info(
            "RewardEscrow initialized",
            extra={
                "event": "escrow.initialized",
                "owner": access_control.owner_address[:10],
                "max_escrow_duration": self.max_escrow_duration,
                "setup_expiry_time": self.setup_expiry_time,
                "deterministic_time": bool(time_provider),
            },
        )

    @classmethod
    def from_config(
        cls,
        config: Any,
        custody: ICustodyLedger,
        debt_oracle: IDebtOracle | None = None,
        *,
        time_provider: TimeProvider | None = None,
    ) -> "RewardEscrow":
        """
        Build an escrow from a loaded ``ConfigManager``.

        Roles listed under ``access`` are granted by the configured owner.
        """
        if not config.access.owner_address:
            raise ConfigurationError("owner_address is required to deploy the escrow")

        access_control = RoleBasedAccessControl(owner_address=config.access.owner_address)
        owner = access_control.caller(config.access.owner_address)
        for issuer in config.access.issuer_addresses:
            access_control.grant_role(owner, Role.ISSUER, issuer)
        for bridge in config.access.bridge_addresses:
            access_control.grant_role(owner, Role.BRIDGE, bridge)

        return cls(
            custody,
            access_control,
            debt_oracle,
            time_provider=time_provider,
            max_escrow_duration=config.vesting.max_escrow_duration,
            account_merging_duration=config.merging.account_merging_duration,
            max_account_merging_duration=config.merging.max_account_merging_duration,
            setup_duration=config.vesting.setup_duration,
        )

    def _current_time(self) -> int:
        timestamp = self._time_provider()
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return an integer timestamp") from exc

    def now(self) -> int:
        """Current time as reported by the injected clock."""
        return self._current_time()

    # ==================== Views ====================

    @property
    def next_entry_id(self) -> int:
        return self.store.next_entry_id

    @property
    def total_escrowed_balance(self) -> int:
        return self.store.total_escrowed_balance

    @property
    def account_merging_duration(self) -> int:
        return self.merging.account_merging_duration

    @property
    def merging_end_time(self) -> int:
        return self.merging.merging_end_time

    def balance_of(self, account: str) -> int:
        """Tokens still escrowed for ``account``."""
        return self.store.total_escrowed_account_balance(normalize_address(account))

    def total_escrowed_account_balance(self, account: str) -> int:
        return self.store.total_escrowed_account_balance(normalize_address(account))

    def total_vested_account_balance(self, account: str) -> int:
        return self.store.total_vested_account_balance(normalize_address(account))

    def num_vesting_entries(self, account: str) -> int:
        return self.store.num_entries(normalize_address(account))

    def account_vesting_entry_ids(self, account: str, index: int) -> int:
        return self.store.entry_id_at(normalize_address(account), index)

    @synchronized
    def get_account_vesting_entry_ids(
        self, account: str, index: int = 0, page_size: int = DEFAULT_PAGE_SIZE
    ) -> List[int]:
        return self.store.entry_ids(normalize_address(account), index, page_size)

    def get_vesting_entry(self, account: str, entry_id: int) -> VestingEntry:
        """
        Get a copy of one of ``account``'s entries.

        Raises:
            EntryNotFoundError: If the account does not own the entry
        """
        entry = self.store.get_entry(normalize_address(account), entry_id)
        if entry is None:
            raise EntryNotFoundError(
                f"Vesting entry {entry_id} not found for account",
                details={"entry_id": entry_id},
            )
        return entry

    @synchronized
    def get_vesting_schedules(
        self, account: str, index: int = 0, page_size: int = DEFAULT_PAGE_SIZE
    ) -> List[VestingEntry]:
        """Page through ``account``'s entries in creation order."""
        owner = normalize_address(account)
        return [
            self.store.get_entry(owner, entry_id)
            for entry_id in self.store.entry_ids(owner, index, page_size)
        ]

    def get_vesting_entry_claimable(self, account: str, entry_id: int) -> int:
        entry = self.store.get_entry(normalize_address(account), entry_id)
        if entry is None:
            return 0
        return rates.claimable(entry, self._current_time())

    @synchronized
    def get_vesting_quantity(self, account: str, entry_ids: Iterable[int]) -> int:
        """Total ``vest`` would release right now for these ids."""
        owner = normalize_address(account)
        now = self._current_time()
        total = 0
        for entry_id in dict.fromkeys(normalize_entry_ids(entry_ids)):
            entry = self.store.get_entry(owner, entry_id)
            if entry is not None:
                total += rates.claimable(entry, now)
        return total

    def rate_per_second(self, account: str, entry_id: int) -> int:
        entry = self.store.get_entry(normalize_address(account), entry_id)
        return rates.rate_per_second(entry) if entry else 0

    def time_since_last_vested(self, account: str, entry_id: int) -> int:
        entry = self.store.get_entry(normalize_address(account), entry_id)
        return rates.time_since_last_vested(entry, self._current_time()) if entry else 0

    def account_merging_is_open(self) -> bool:
        return self.merging.is_open(self._current_time())

    def nominated_receiver(self, account: str) -> Optional[str]:
        return self.merging.nominated_receiver(normalize_address(account))

    @synchronized
    def verify_conservation(self) -> None:
        """
        Raises:
            StateError: If an aggregate disagrees with the entries it sums
        """
        self.store.verify_conservation()

    # ==================== Vesting ====================

    @synchronized
    def vest(self, caller: Caller, account: str, entry_ids: Iterable[int]) -> int:
        """
        Vest whatever is claimable across ``entry_ids`` for ``account``.

        Unknown, foreign, duplicate and fully vested ids contribute nothing.
        Tokens are sent to ``account`` regardless of who calls.

        Args:
            caller: Any caller
            account: Owner of the entries
            entry_ids: Entry ids to claim

        Returns:
            Total amount vested (0 makes the call a silent no-op)

        Raises:
            CustodyTransferError: If custody cannot pay out; nothing changes
        """
        owner = normalize_address(account)
        ids = normalize_entry_ids(entry_ids)
        now = self._current_time()
        total = 0

        with self.store.atomic():
            for entry_id in ids:
                entry = self.store.get_entry(owner, entry_id)
                if entry is None:
                    continue
                amount = rates.claimable(entry, now)
                if amount > 0:
                    self.store.reduce_remaining(owner, entry_id, amount, now)
                    total += amount

            if total > 0 and not self.custody.transfer(owner, total):
                raise CustodyTransferError("token transfer failed")

        if total == 0:
            logger.debug(
                "Nothing to vest",
                extra={"event": "escrow.vest_noop", "account": owner[:10], "entries": len(ids)},
            )
            return 0

        logger.info(
            "Vested escrow entries",
            extra={
                "event": "escrow.vested",
                "account": owner[:10],
                "caller": caller.address[:10],
                "amount": total,
                "entries": len(ids),
            },
        )
        self.events.emit(Vested(timestamp=now, beneficiary=owner, value=total))
        return total

    # ==================== Issuance ====================

    @requires_role(Role.ISSUER)
    @synchronized
    def append_vesting_entry(
        self, caller: Caller, account: str, quantity: int, duration: int
    ) -> int:
        """
        Create an entry backed by tokens already held in custody.

        Args:
            caller: Caller holding the issuer role
            account: Beneficiary of the entry
            quantity: Amount to escrow
            duration: Vesting period in seconds

        Returns:
            New entry id

        Raises:
            UnauthorizedError: If caller is not an issuer
            InvalidAmountError: If quantity is zero
            InsufficientBalanceError: If un-escrowed custody balance is too low
            InvalidDurationError: If duration is zero or above the cap
        """
        beneficiary = validate_beneficiary(account)
        quantity = validate_amount(quantity)

        held = self.custody.balance()
        available = held - self.store.total_escrowed_balance
        if quantity > available:
            logger.warning(
                "Vesting entry rejected: insufficient custody balance",
                extra={
                    "event": "escrow.insufficient_balance",
                    "required": quantity,
                    "available": available,
                },
            )
            raise InsufficientBalanceError(
                "Must be enough balance in the contract to provide for the vesting entry",
                required=quantity,
                available=available,
            )

        duration = validate_duration(duration, self.max_escrow_duration)
        return self._create_entry(caller, beneficiary, quantity, duration)

    @synchronized
    def create_escrow_entry(
        self, caller: Caller, beneficiary: str, deposit: int, duration: int
    ) -> int:
        """
        Create an entry funded by pulling ``deposit`` from the caller.

        The caller must have approved the escrow to spend ``deposit``.

        Raises:
            InvalidAddressError: If beneficiary is the null account
            InvalidAmountError: If deposit is zero or not above duration
            InvalidDurationError: If duration is zero or above the cap
            CustodyTransferError: If the approved transfer fails
        """
        beneficiary = validate_beneficiary(beneficiary)
        deposit = validate_amount(deposit)
        if isinstance(duration, int) and deposit <= duration:
            raise InvalidAmountError("Escrow quantity less than duration")
        duration = validate_duration(duration, self.max_escrow_duration)

        if not self.custody.transfer_from(caller.address, deposit):
            raise CustodyTransferError("token transfer failed")

        return self._create_entry(caller, beneficiary, deposit, duration)

    def _create_entry(self, caller: Caller, beneficiary: str, quantity: int, duration: int) -> int:
        now = self._current_time()
        entry_id = self.store.create_entry(beneficiary, quantity, duration, now)

        logger.info(
            "Vesting entry created",
            extra={
                "event": "escrow.entry_created",
                "entry_id": entry_id,
                "beneficiary": beneficiary[:10],
                "caller": caller.address[:10],
                "amount": quantity,
                "duration": duration,
            },
        )
        self.events.emit(
            VestingEntryCreated(
                timestamp=now,
                beneficiary=beneficiary,
                value=quantity,
                duration=duration,
                entry_id=entry_id,
            )
        )
        return entry_id

    @requires_role(Role.OWNER)
    @synchronized
    def set_max_escrow_duration(self, caller: Caller, duration: int) -> None:
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise InvalidDurationError("Max escrow duration must be a positive integer")
        self.max_escrow_duration = duration
        logger.info(
            "Max escrow duration updated",
            extra={"event": "escrow.max_duration_updated", "duration": duration},
        )
        self.events.emit(MaxEscrowDurationUpdated(timestamp=self._current_time(), duration=duration))

    # ==================== Migration ====================

    @requires_role(Role.OWNER)
    @synchronized
    def import_vesting_entries(self, caller: Caller, records: Iterable[ImportRecord]) -> List[int]:
        """
        Insert historical grants, bypassing issuance preconditions.

        The batch is all-or-nothing: every record is validated before any
        entry is created.

        Args:
            caller: Caller holding the owner role
            records: Grants to import, in order

        Returns:
            Ids of the created entries, in record order

        Raises:
            SetupExpiredError: If the setup period is over
            ValidationError: If any record is invalid
        """
        now = self._current_time()
        if now >= self.setup_expiry_time:
            raise SetupExpiredError(
                "Can only perform this action during setup",
                details={"setup_expiry_time": self.setup_expiry_time},
            )

        planned = [self._plan_import(record, now) for record in records]
        entry_ids: List[int] = []

        with self.store.atomic():
            for account, amount, duration, end_time in planned:
                entry_ids.append(
                    self.store.create_entry(account, amount, duration, now, end_time=end_time)
                )

        total = sum(amount for _, amount, _, _ in planned)
        logger.info(
            "Vesting entries imported",
            extra={
                "event": "escrow.entries_imported",
                "count": len(entry_ids),
                "total_amount": total,
                "caller": caller.address[:10],
            },
        )
        self.events.emit(
            VestingEntriesImported(
                timestamp=now,
                count=len(entry_ids),
                total_amount=total,
                entry_ids=tuple(entry_ids),
            )
        )
        return entry_ids

    def _plan_import(self, record: ImportRecord, now: int) -> Tuple[str, int, int, Optional[int]]:
        account = validate_beneficiary(record.account)
        amount = record.escrow_amount

        if record.duration is not None:
            duration = validate_duration(record.duration, self.max_escrow_duration)
            return account, amount, duration, None

        end_time = record.end_time
        # Already-ended grants get a one-second schedule so they flush on the next vest
        duration = validate_duration(max(end_time - now, 1), self.max_escrow_duration)
        return account, amount, duration, end_time

    @requires_role(Role.BRIDGE)
    @synchronized
    def burn_for_migration(
        self, caller: Caller, account: str, entry_ids: Iterable[int]
    ) -> Tuple[int, List[VestingEntry]]:
        """
        Release ``account``'s listed entries to the bridge for migration.

        Remaining amounts are zeroed without counting as vested, and the
        sum is transferred to the calling bridge.

        Returns:
            (amount migrated, copies of the entries as they were before burning)
        """
        owner = normalize_address(account)
        now = self._current_time()
        total = 0
        burned: List[VestingEntry] = []

        with self.store.atomic():
            for entry_id in normalize_entry_ids(entry_ids):
                entry = self.store.get_entry(owner, entry_id)
                if entry is None or entry.remaining_amount == 0:
                    continue
                burned.append(replace(entry))
                self.store.reduce_remaining(
                    owner, entry_id, entry.remaining_amount, now, credit_vested=False
                )
                total += entry.remaining_amount

            if total > 0 and not self.custody.transfer(caller.address, total):
                raise CustodyTransferError("token transfer failed")

        if total > 0:
            logger.info(
                "Escrow entries burned for migration",
                extra={
                    "event": "escrow.burned_for_migration",
                    "account": owner[:10],
                    "bridge": caller.address[:10],
                    "amount": total,
                    "entries": len(burned),
                },
            )
            self.events.emit(
                BurnedForMigration(
                    timestamp=now,
                    account=owner,
                    entry_ids=tuple(entry.entry_id for entry in burned),
                    escrowed_amount_migrated=total,
                )
            )
        return total, burned

    # ==================== Account Merging ====================

    @requires_role(Role.OWNER)
    @synchronized
    def start_merging_window(self, caller: Caller) -> int:
        """
        Open the account merging window.

        Returns:
            Window end time

        Raises:
            MergeWindowOpenError: If the window is already open
        """
        now = self._current_time()
        end_time = self.merging.start(now)
        self.events.emit(AccountMergingStarted(timestamp=now, end_time=end_time))
        return end_time

    @requires_role(Role.OWNER)
    @synchronized
    def set_account_merging_duration(self, caller: Caller, duration: int) -> None:
        now = self._current_time()
        self.merging.set_duration(duration, now)
        self.events.emit(AccountMergingDurationUpdated(timestamp=now, duration=duration))

    def _require_no_debt(self, account: str) -> None:
        if self.debt_oracle is None:
            raise ConfigurationError("Account merging requires a debt oracle")
        debt = self.debt_oracle.debt_balance_of(account)
        if debt != 0:
            logger.warning(
                "Merge rejected: account has debt",
                extra={"event": "merging.debt_outstanding", "account": account[:10], "debt": debt},
            )
            raise OutstandingDebtError(
                "Cannot merge accounts with debt",
                details={"account": account, "debt": debt},
            )

    @synchronized
    def nominate_account_to_merge(self, caller: Caller, destination: str) -> NominateAccountToMerge:
        """
        Nominate ``destination`` to receive the caller's entries.

        Raises:
            MergeWindowClosedError: If the window is not open
            SelfNominationError: If destination is the caller
            OutstandingDebtError: If the caller has debt
        """
        now = self._current_time()
        self.merging.require_open(now)

        destination_norm = normalize_address(destination)
        if destination_norm == caller.address:
            raise SelfNominationError("Cannot nominate own account to merge")

        self._require_no_debt(caller.address)

        self.merging.nominate(caller.address, destination_norm)
        logger.info(
            "Account nominated to merge",
            extra={
                "event": "merging.nominated",
                "account": caller.address[:10],
                "destination": destination_norm[:10],
            },
        )
        return self.events.emit(
            NominateAccountToMerge(timestamp=now, account=caller.address, destination=destination_norm)
        )

    @synchronized
    def merge_account(self, caller: Caller, account_to_merge: str, entry_ids: Iterable[int]) -> int:
        """
        Move the listed entries of ``account_to_merge`` to the caller.

        Only the nominated destination may merge. Ids the source does not
        own (including repeats) are skipped.

        Returns:
            Total remaining amount moved

        Raises:
            MergeWindowClosedError: If the window is not open
            OutstandingDebtError: If the source has debt
            NotNominatedError: If the caller is not the nominated destination
        """
        now = self._current_time()
        self.merging.require_open(now)

        source = normalize_address(account_to_merge)
        self._require_no_debt(source)

        if self.merging.nominated_receiver(source) != caller.address:
            raise NotNominatedError(
                "Address is not nominated to merge",
                details={"account_to_merge": source, "caller": caller.address},
            )

        ids = normalize_entry_ids(entry_ids)
        moved_ids: List[int] = []
        total = 0
        with self.store.atomic():
            for entry_id in ids:
                if self.store.owner_of(entry_id) != source:
                    continue
                total += self.store.reassign_owner(source, caller.address, entry_id)
                moved_ids.append(entry_id)

        self.merging.clear_nomination(source)

        logger.info(
            "Account merged",
            extra={
                "event": "merging.account_merged",
                "account_to_merge": source[:10],
                "destination": caller.address[:10],
                "amount": total,
                "entries": len(moved_ids),
            },
        )
        self.events.emit(
            AccountMerged(
                timestamp=now,
                account_to_merge=source,
                destination=caller.address,
                escrow_amount_merged=total,
                entry_ids=tuple(moved_ids),
            )
        )
        return total
