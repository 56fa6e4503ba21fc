"""
Reward Escrow - Time-Based Token Escrow and Vesting Ledger

Holds tokens on behalf of many accounts and releases them linearly over
per-grant schedules.

Main Components:
- Entry Store: arena of vesting entries with per-account indexes and aggregates
- Rate Calculator: integer release-rate and claimable-amount arithmetic
- Reward Escrow: vesting, grant issuance, migration and account merging
- Contracts: reference ERC20 token used as the custody ledger
- CLI: inspection and bulk-import tooling over JSON state snapshots
"""

__version__ = "0.1.0"
__author__ = "Reward Escrow Development Team"

__all__ = []
