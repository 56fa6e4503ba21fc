"""
JSON snapshots of escrow state.

A snapshot holds the entry store with its aggregates, the merge window and
pending nominations, engine settings, role assignments and, when custody is
a ``TokenCustody``, the reference token itself. Files are written to a
temporary path and swapped in with ``os.replace`` so a crash never leaves a
half-written snapshot behind.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

from reward_escrow.contracts.erc20 import ERC20Token
from reward_escrow.core.exceptions import ConfigurationError, StateError
from reward_escrow.core.protocols import ICustodyLedger, IDebtOracle, TimeProvider
from reward_escrow.escrow.access_control import RoleBasedAccessControl
from reward_escrow.escrow.custody import TokenCustody
from reward_escrow.escrow.entry_store import EntryStore
from reward_escrow.escrow.merging import AccountMergingWindow
from reward_escrow.escrow.reward_escrow import RewardEscrow

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def dump_state(escrow: RewardEscrow) -> Dict[str, Any]:
    """Serialize an escrow into a JSON-compatible dictionary."""
    with escrow._lock:
        snapshot: Dict[str, Any] = {
            "version": STATE_VERSION,
            "settings": {
                "max_escrow_duration": escrow.max_escrow_duration,
                "setup_expiry_time": escrow.setup_expiry_time,
            },
            "access": {
                "owner_address": escrow.access_control.owner_address,
                "roles": {
                    role: sorted(members)
                    for role, members in escrow.access_control.roles.items()
                },
            },
            "store": escrow.store.to_dict(),
            "merging": escrow.merging.to_dict(),
        }
        if isinstance(escrow.custody, TokenCustody):
            snapshot["custody"] = {
                "escrow_address": escrow.custody.escrow_address,
                "token": escrow.custody.token.to_dict(),
            }
        return snapshot


def restore_state(
    data: Dict[str, Any],
    custody: Optional[ICustodyLedger] = None,
    debt_oracle: Optional[IDebtOracle] = None,
    *,
    time_provider: Optional[TimeProvider] = None,
) -> RewardEscrow:
    """
    Rebuild an escrow from a snapshot produced by ``dump_state``.

    Args:
        data: Snapshot dictionary
        custody: Custody ledger to use; rebuilt from the snapshot if omitted
        debt_oracle: Debt oracle for account merging
        time_provider: Clock for the restored engine

    Raises:
        StateError: If the snapshot is malformed or fails the conservation audit
        ConfigurationError: If no custody is given and none is stored
    """
    version = data.get("version")
    if version != STATE_VERSION:
        raise StateError(f"Unsupported state version: {version}")

    stored = data.get("custody")
    if custody is None and not stored:
        raise ConfigurationError("State snapshot has no custody; pass one explicitly")

    try:
        if custody is None:
            custody = TokenCustody(ERC20Token.from_dict(stored["token"]), stored["escrow_address"])
        access = data["access"]
        access_control = RoleBasedAccessControl(
            owner_address=access.get("owner_address", ""),
            roles={role: set(members) for role, members in access.get("roles", {}).items()},
        )
        settings = data["settings"]
        max_escrow_duration = int(settings["max_escrow_duration"])
        setup_expiry_time = int(settings["setup_expiry_time"])
        store = EntryStore.from_dict(data["store"])
        merging = AccountMergingWindow.from_dict(data.get("merging", {}))
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise StateError(f"Malformed state snapshot: {exc!r}") from exc

    escrow = RewardEscrow(
        custody,
        access_control,
        debt_oracle,
        time_provider=time_provider,
        max_escrow_duration=max_escrow_duration,
        store=store,
        merging_window=merging,
    )
    escrow.setup_expiry_time = setup_expiry_time

    logger.info(
        "Escrow state restored",
        extra={
            "event": "persistence.restored",
            "entries": len(store),
            "total_escrowed": store.total_escrowed_balance,
        },
    )
    return escrow


def save_state(escrow: RewardEscrow, path: str) -> None:
    """Write a snapshot to ``path`` atomically."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    snapshot = dump_state(escrow)
    snapshot["saved_at"] = time.time()

    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(snapshot, handle, indent=2)
    os.replace(tmp_path, path)

    logger.info(
        "Escrow state saved",
        extra={"event": "persistence.saved", "path": path},
    )


def load_state(
    path: str,
    custody: Optional[ICustodyLedger] = None,
    debt_oracle: Optional[IDebtOracle] = None,
    *,
    time_provider: Optional[TimeProvider] = None,
) -> RewardEscrow:
    """
    Load a snapshot file written by ``save_state``.

    Raises:
        StateError: If the file cannot be read or parsed
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, OSError) as exc:
        logger.error(
            "Failed to load escrow state",
            extra={"event": "persistence.load_failed", "path": path, "error": str(exc)},
        )
        raise StateError(f"Cannot load state from {path}: {exc}") from exc

    return restore_state(data, custody, debt_oracle, time_provider=time_provider)
