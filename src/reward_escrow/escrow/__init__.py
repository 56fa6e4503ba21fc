"""
Escrow engine: entry store, vesting arithmetic, access control, account
merging and the collaborators the engine consumes.
"""

from reward_escrow.escrow.access_control import Caller, Role, RoleBasedAccessControl
from reward_escrow.escrow.custody import TokenCustody
from reward_escrow.escrow.debt_oracle import StaticDebtOracle
from reward_escrow.escrow.entry_store import EntryStore, VestingEntry
from reward_escrow.escrow.events import EventBus
from reward_escrow.escrow.merging import AccountMergingWindow
from reward_escrow.escrow.reward_escrow import RewardEscrow
from reward_escrow.escrow.schemas import ImportRecord

__all__ = [
    "AccountMergingWindow",
    "Caller",
    "EntryStore",
    "EventBus",
    "ImportRecord",
    "RewardEscrow",
    "Role",
    "RoleBasedAccessControl",
    "StaticDebtOracle",
    "TokenCustody",
    "VestingEntry",
]
