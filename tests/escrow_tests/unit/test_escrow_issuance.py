"""
Unit tests for grant issuance: issuer-backed entries, self-funded
entries and the max duration setting.
"""

import pytest

from reward_escrow.core.constants import DEFAULT_MAX_ESCROW_DURATION, UNIT, WEEK, YEAR, ZERO_ADDRESS
from reward_escrow.core.exceptions import (
    CustodyTransferError,
    InsufficientBalanceError,
    InvalidAddressError,
    InvalidAmountError,
    InvalidDurationError,
    UnauthorizedError,
)
from reward_escrow.escrow.events import MaxEscrowDurationUpdated, VestingEntryCreated


class TestAppendVestingEntry:
    def test_creates_entry(self, escrow, issuer, alice, clock):
        entry_id = escrow.append_vesting_entry(issuer, alice.address, 10 * UNIT, YEAR)

        assert entry_id == 1
        assert escrow.next_entry_id == 2
        entry = escrow.get_vesting_entry(alice.address, entry_id)
        assert entry.escrow_amount == entry.remaining_amount == 10 * UNIT
        assert entry.end_time == clock.now + YEAR
        assert entry.duration == YEAR
        assert escrow.total_escrowed_balance == 10 * UNIT
        assert escrow.events.last(VestingEntryCreated) == VestingEntryCreated(
            timestamp=clock.now,
            beneficiary=alice.address,
            value=10 * UNIT,
            duration=YEAR,
            entry_id=entry_id,
        )

    def test_requires_issuer_role(self, escrow, alice, owner):
        with pytest.raises(UnauthorizedError):
            escrow.append_vesting_entry(alice, alice.address, UNIT, YEAR)
        with pytest.raises(UnauthorizedError):
            escrow.append_vesting_entry(owner, alice.address, UNIT, YEAR)
        assert escrow.next_entry_id == 1

    def test_zero_quantity(self, escrow, issuer, alice):
        with pytest.raises(InvalidAmountError, match="Quantity cannot be zero"):
            escrow.append_vesting_entry(issuer, alice.address, 0, YEAR)

    def test_custody_must_cover_new_entry(self, escrow, custody, issuer, alice):
        available = custody.balance()
        escrow.append_vesting_entry(issuer, alice.address, available - UNIT, YEAR)

        with pytest.raises(
            InsufficientBalanceError,
            match="Must be enough balance in the contract to provide for the vesting entry",
        ) as exc_info:
            escrow.append_vesting_entry(issuer, alice.address, UNIT + 1, YEAR)

        assert exc_info.value.required == UNIT + 1
        assert exc_info.value.available == UNIT
        escrow.append_vesting_entry(issuer, alice.address, UNIT, YEAR)
        assert escrow.total_escrowed_balance == available

    def test_duration_bounds(self, escrow, issuer, alice):
        message = "Cannot escrow with 0 duration OR above max_duration"
        with pytest.raises(InvalidDurationError, match=message):
            escrow.append_vesting_entry(issuer, alice.address, UNIT, 0)
        with pytest.raises(InvalidDurationError, match=message):
            escrow.append_vesting_entry(issuer, alice.address, UNIT, DEFAULT_MAX_ESCROW_DURATION + 1)

        entry_id = escrow.append_vesting_entry(issuer, alice.address, UNIT, DEFAULT_MAX_ESCROW_DURATION)
        assert escrow.get_vesting_entry(alice.address, entry_id).duration == DEFAULT_MAX_ESCROW_DURATION

    def test_rejects_null_beneficiary(self, escrow, issuer):
        with pytest.raises(InvalidAddressError):
            escrow.append_vesting_entry(issuer, ZERO_ADDRESS, UNIT, YEAR)


class TestCreateEscrowEntry:
    @pytest.fixture
    def funded_alice(self, token, owner, alice, custody):
        token.mint(owner.address, alice.address, 1000 * UNIT)
        token.approve(alice.address, custody.escrow_address, 1000 * UNIT)
        return alice

    def test_pulls_deposit_and_creates_entry(self, escrow, token, custody, funded_alice, bob):
        custody_before = custody.balance()

        entry_id = escrow.create_escrow_entry(funded_alice, bob.address, 100 * UNIT, WEEK)

        assert token.balance_of(funded_alice.address) == 900 * UNIT
        assert custody.balance() == custody_before + 100 * UNIT
        entry = escrow.get_vesting_entry(bob.address, entry_id)
        assert entry.escrow_amount == 100 * UNIT
        assert escrow.num_vesting_entries(funded_alice.address) == 0

    def test_null_beneficiary(self, escrow, funded_alice):
        with pytest.raises(InvalidAddressError, match=r"Cannot create escrow with address\(0\)"):
            escrow.create_escrow_entry(funded_alice, ZERO_ADDRESS, 100 * UNIT, WEEK)

    def test_deposit_must_exceed_duration(self, escrow, funded_alice, bob):
        with pytest.raises(InvalidAmountError, match="Escrow quantity less than duration"):
            escrow.create_escrow_entry(funded_alice, bob.address, WEEK, WEEK)

        entry_id = escrow.create_escrow_entry(funded_alice, bob.address, WEEK + 1, WEEK)
        assert escrow.rate_per_second(bob.address, entry_id) == 1

    def test_duration_above_cap(self, escrow, funded_alice, bob):
        with pytest.raises(InvalidDurationError):
            escrow.create_escrow_entry(funded_alice, bob.address, 100 * UNIT, DEFAULT_MAX_ESCROW_DURATION + 1)

    def test_without_approval(self, escrow, token, owner, bob, alice):
        token.mint(owner.address, alice.address, 1000 * UNIT)

        with pytest.raises(CustodyTransferError):
            escrow.create_escrow_entry(alice, bob.address, 100 * UNIT, WEEK)

        assert escrow.next_entry_id == 1
        assert token.balance_of(alice.address) == 1000 * UNIT

    def test_anyone_can_self_fund(self, escrow, funded_alice, bob):
        assert not funded_alice.roles
        escrow.create_escrow_entry(funded_alice, bob.address, 100 * UNIT, WEEK)
        assert escrow.balance_of(bob.address) == 100 * UNIT


class TestMaxEscrowDuration:
    def test_owner_updates_cap(self, escrow, owner, issuer, alice):
        escrow.set_max_escrow_duration(owner, 10 * YEAR)

        assert escrow.max_escrow_duration == 10 * YEAR
        assert escrow.events.last(MaxEscrowDurationUpdated).duration == 10 * YEAR
        escrow.append_vesting_entry(issuer, alice.address, UNIT, 5 * YEAR)

    def test_lower_cap_applies_to_new_entries(self, escrow, owner, issuer, alice):
        escrow.set_max_escrow_duration(owner, WEEK)
        with pytest.raises(InvalidDurationError):
            escrow.append_vesting_entry(issuer, alice.address, UNIT, WEEK + 1)

    def test_requires_owner(self, escrow, issuer):
        with pytest.raises(UnauthorizedError):
            escrow.set_max_escrow_duration(issuer, YEAR)

    def test_rejects_zero(self, escrow, owner):
        with pytest.raises(InvalidDurationError):
            escrow.set_max_escrow_duration(owner, 0)
