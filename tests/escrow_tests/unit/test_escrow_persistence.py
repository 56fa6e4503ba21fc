"""
Unit tests for escrow state snapshots.
"""

import json

import pytest

from reward_escrow.core.constants import UNIT, WEEK, YEAR
from reward_escrow.core.exceptions import ConfigurationError, StateError
from reward_escrow.escrow.persistence import dump_state, load_state, restore_state, save_state


@pytest.fixture
def populated(escrow, owner, issuer, alice, bob, clock):
    first = escrow.append_vesting_entry(issuer, alice.address, 10 * UNIT, YEAR)
    escrow.append_vesting_entry(issuer, bob.address, 20 * UNIT, WEEK)
    clock.advance(1000)
    escrow.vest(alice, alice.address, [first])
    escrow.set_max_escrow_duration(owner, 3 * YEAR)
    escrow.start_merging_window(owner)
    escrow.nominate_account_to_merge(alice, bob.address)
    return escrow


class TestSnapshots:
    def test_restore_round_trip(self, populated, clock, debt_oracle, alice, bob):
        restored = restore_state(dump_state(populated), debt_oracle=debt_oracle, time_provider=clock)

        assert dump_state(restored) == dump_state(populated)
        assert restored.max_escrow_duration == 3 * YEAR
        assert restored.setup_expiry_time == populated.setup_expiry_time
        assert restored.account_merging_is_open()
        assert restored.nominated_receiver(alice.address) == bob.address
        assert restored.custody.balance() == populated.custody.balance()
        restored.verify_conservation()

    def test_restored_engine_keeps_working(self, populated, clock, debt_oracle, alice, bob):
        restored = restore_state(dump_state(populated), debt_oracle=debt_oracle, time_provider=clock)
        bob_caller = restored.access_control.caller(bob.address)

        moved = restored.merge_account(bob_caller, alice.address, [1])

        assert moved == populated.total_escrowed_account_balance(alice.address)
        assert restored.num_vesting_entries(alice.address) == 0
        # The original engine is untouched
        assert populated.num_vesting_entries(alice.address) == 1

    def test_explicit_custody_is_used(self, populated, custody, clock):
        data = dump_state(populated)
        data.pop("custody")

        with pytest.raises(ConfigurationError):
            restore_state(data, time_provider=clock)
        assert restore_state(data, custody, time_provider=clock).custody is custody

    def test_rejects_unknown_version(self, populated):
        data = dump_state(populated)
        data["version"] = 99
        with pytest.raises(StateError, match="Unsupported state version"):
            restore_state(data)

    @pytest.mark.parametrize(
        "section, key",
        [
            (None, "settings"),
            (None, "store"),
            ("settings", "max_escrow_duration"),
            ("settings", "setup_expiry_time"),
            ("custody", "token"),
            ("custody", "escrow_address"),
        ],
    )
    def test_rejects_malformed_snapshot(self, populated, section, key):
        data = dump_state(populated)
        del (data if section is None else data[section])[key]

        with pytest.raises(StateError, match="Malformed"):
            restore_state(data)

    def test_rejects_non_numeric_settings(self, populated):
        data = dump_state(populated)
        data["settings"]["setup_expiry_time"] = "soon"

        with pytest.raises(StateError, match="Malformed"):
            restore_state(data)

    def test_rejects_inconsistent_balances(self, populated):
        data = dump_state(populated)
        data["store"]["total_escrowed_balance"] += 1
        with pytest.raises(StateError):
            restore_state(data)


class TestStateFiles:
    def test_save_and_load(self, populated, clock, tmp_path):
        path = tmp_path / "nested" / "escrow.json"

        save_state(populated, str(path))
        loaded = load_state(str(path), time_provider=clock)

        assert not (tmp_path / "nested" / "escrow.json.tmp").exists()
        assert json.loads(path.read_text())["version"] == 1
        assert dump_state(loaded) == dump_state(populated)

    def test_load_missing_or_corrupt(self, tmp_path):
        with pytest.raises(StateError):
            load_state(str(tmp_path / "missing.json"))

        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("{not json")
        with pytest.raises(StateError):
            load_state(str(corrupt))
