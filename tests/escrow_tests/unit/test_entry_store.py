"""
Unit tests for the vesting entry store: id allocation, per-account
indexes, aggregates, reassignment and journaled rollback.
"""

import pytest

from reward_escrow.core.exceptions import (
    InvalidAmountError,
    InvalidDurationError,
    StateError,
    ValidationError,
)
from reward_escrow.escrow.entry_store import EntryStore, VestingEntry

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
NOW = 1_000_000


@pytest.fixture
def store():
    return EntryStore()


class TestCreateEntry:
    def test_ids_are_global_and_start_at_one(self, store):
        first = store.create_entry(ALICE, 100, 10, NOW)
        second = store.create_entry(BOB, 200, 10, NOW)
        third = store.create_entry(ALICE, 300, 10, NOW)

        assert (first, second, third) == (1, 2, 3)
        assert store.next_entry_id == 4
        assert store.entry_ids(ALICE) == [1, 3]
        assert store.entry_ids(BOB) == [2]

    def test_entry_fields(self, store):
        entry_id = store.create_entry(ALICE, 500, 50, NOW)
        entry = store.get_entry(ALICE, entry_id)

        assert entry == VestingEntry(
            entry_id=entry_id,
            end_time=NOW + 50,
            escrow_amount=500,
            remaining_amount=500,
            duration=50,
            last_vested=0,
        )
        assert entry.start_time == NOW
        assert entry.vested_amount == 0
        assert not entry.is_fully_vested

    def test_explicit_end_time(self, store):
        entry_id = store.create_entry(ALICE, 500, 50, NOW, end_time=NOW + 30)
        assert store.get_entry(ALICE, entry_id).end_time == NOW + 30

    def test_aggregates_track_new_entries(self, store):
        store.create_entry(ALICE, 100, 10, NOW)
        store.create_entry(ALICE, 50, 10, NOW)
        store.create_entry(BOB, 25, 10, NOW)

        assert store.total_escrowed_account_balance(ALICE) == 150
        assert store.total_escrowed_account_balance(BOB) == 25
        assert store.total_escrowed_balance == 175
        store.verify_conservation()

    def test_rejects_zero_amount_and_duration(self, store):
        with pytest.raises(InvalidAmountError):
            store.create_entry(ALICE, 0, 10, NOW)
        with pytest.raises(InvalidDurationError):
            store.create_entry(ALICE, 10, 0, NOW)
        assert len(store) == 0
        assert store.next_entry_id == 1


class TestViews:
    def test_get_entry_returns_copy(self, store):
        entry_id = store.create_entry(ALICE, 100, 10, NOW)
        entry = store.get_entry(ALICE, entry_id)
        entry.remaining_amount = 0

        assert store.get_entry(ALICE, entry_id).remaining_amount == 100

    def test_foreign_and_unknown_entries_are_invisible(self, store):
        entry_id = store.create_entry(ALICE, 100, 10, NOW)

        assert store.get_entry(BOB, entry_id) is None
        assert store.get_entry(ALICE, 99) is None
        assert store.owner_of(entry_id) == ALICE
        assert store.owner_of(99) is None

    def test_entry_id_at(self, store):
        store.create_entry(ALICE, 100, 10, NOW)
        store.create_entry(ALICE, 100, 10, NOW)

        assert store.entry_id_at(ALICE, 1) == 2
        with pytest.raises(IndexError):
            store.entry_id_at(ALICE, 2)
        with pytest.raises(IndexError):
            store.entry_id_at(BOB, 0)

    def test_paging(self, store):
        for _ in range(5):
            store.create_entry(ALICE, 100, 10, NOW)

        assert store.entry_ids(ALICE, 1, 2) == [2, 3]
        assert store.entry_ids(ALICE, 4, 10) == [5]
        assert store.entry_ids(ALICE, 10, 10) == []
        assert store.entry_ids(BOB, 0, 10) == []
        assert store.num_entries(ALICE) == 5
        assert store.num_entries(BOB) == 0

    @pytest.mark.parametrize("index, page_size", [(-1, 5), (0, -1), (-3, None)])
    def test_paging_rejects_negative_bounds(self, store, index, page_size):
        for _ in range(3):
            store.create_entry(ALICE, 100, 10, NOW)

        with pytest.raises(ValidationError, match="cannot be negative"):
            store.entry_ids(ALICE, index, page_size)


class TestReduceRemaining:
    def test_vested_credit(self, store):
        entry_id = store.create_entry(ALICE, 100, 10, NOW)
        store.reduce_remaining(ALICE, entry_id, 40, NOW + 4)

        entry = store.get_entry(ALICE, entry_id)
        assert entry.remaining_amount == 60
        assert entry.last_vested == NOW + 4
        assert store.total_escrowed_account_balance(ALICE) == 60
        assert store.total_vested_account_balance(ALICE) == 40
        assert store.total_escrowed_balance == 60

    def test_without_vested_credit(self, store):
        entry_id = store.create_entry(ALICE, 100, 10, NOW)
        store.reduce_remaining(ALICE, entry_id, 100, NOW, credit_vested=False)

        assert store.total_vested_account_balance(ALICE) == 0
        assert store.total_escrowed_balance == 0
        assert store.get_entry(ALICE, entry_id).is_fully_vested

    def test_rejects_over_reduction_and_wrong_owner(self, store):
        entry_id = store.create_entry(ALICE, 100, 10, NOW)

        with pytest.raises(StateError):
            store.reduce_remaining(ALICE, entry_id, 101, NOW)
        with pytest.raises(StateError):
            store.reduce_remaining(BOB, entry_id, 1, NOW)


class TestReassignOwner:
    def test_moves_entry_and_balance(self, store):
        ids = [store.create_entry(ALICE, amount, 10, NOW) for amount in (100, 200, 300)]
        store.create_entry(BOB, 5, 10, NOW)
        store.reduce_remaining(ALICE, ids[1], 50, NOW)

        moved = store.reassign_owner(ALICE, BOB, ids[1])

        assert moved == 150
        assert store.entry_ids(ALICE) == [ids[0], ids[2]]
        assert store.entry_ids(BOB) == [4, ids[1]]
        assert store.total_escrowed_account_balance(ALICE) == 400
        assert store.total_escrowed_account_balance(BOB) == 155
        # Vested history stays with the original owner
        assert store.total_vested_account_balance(ALICE) == 50
        assert store.total_vested_account_balance(BOB) == 0
        assert store.owner_of(ids[1]) == BOB
        store.verify_conservation()


class TestAtomic:
    def test_rolls_back_all_mutations(self, store):
        kept = store.create_entry(ALICE, 100, 10, NOW)
        before = store.to_dict()

        with pytest.raises(RuntimeError):
            with store.atomic():
                store.create_entry(BOB, 10, 10, NOW)
                store.reduce_remaining(ALICE, kept, 30, NOW + 3)
                store.reassign_owner(ALICE, BOB, kept)
                raise RuntimeError("collaborator failed")

        assert store.to_dict() == before
        assert store.next_entry_id == 2
        store.verify_conservation()

    def test_nested_blocks_join_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.atomic():
                store.create_entry(ALICE, 100, 10, NOW)
                with store.atomic():
                    store.create_entry(ALICE, 100, 10, NOW)
                raise RuntimeError("late failure")

        assert len(store) == 0
        assert store.total_escrowed_balance == 0

    def test_successful_block_commits(self, store):
        with store.atomic():
            store.create_entry(ALICE, 100, 10, NOW)

        assert store.total_escrowed_balance == 100
        # Later failures outside the block cannot undo committed work
        with pytest.raises(RuntimeError):
            with store.atomic():
                raise RuntimeError("unrelated")
        assert store.total_escrowed_balance == 100


class TestSerialization:
    def test_round_trip_preserves_state(self, store):
        first = store.create_entry(ALICE, 100, 10, NOW)
        store.create_entry(BOB, 200, 20, NOW)
        store.reduce_remaining(ALICE, first, 25, NOW + 2)

        restored = EntryStore.from_dict(store.to_dict())

        assert restored.to_dict() == store.to_dict()
        assert restored.get_entry(ALICE, first).last_vested == NOW + 2

    def test_tampered_snapshot_fails_audit(self, store):
        store.create_entry(ALICE, 100, 10, NOW)
        data = store.to_dict()
        data["total_escrowed_balance"] = 99

        with pytest.raises(StateError):
            EntryStore.from_dict(data)

    def test_account_mismatch_fails_audit(self, store):
        store.create_entry(ALICE, 100, 10, NOW)
        data = store.to_dict()
        data["accounts"][ALICE]["total_escrowed"] = 1

        with pytest.raises(StateError, match="Escrowed balance mismatch"):
            EntryStore.from_dict(data)
