"""
Escrow-wide constants.

Amounts are integers in base units (18 decimals) and times are integer
Unix timestamps in seconds.
"""

from __future__ import annotations

DECIMALS = 18
UNIT = 10**DECIMALS

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY
# 365.242 days
YEAR = 31556926

ZERO_ADDRESS = "0x" + "0" * 40
UINT256_MAX = 2**256 - 1

DEFAULT_MAX_ESCROW_DURATION = 2 * 52 * WEEK
DEFAULT_ACCOUNT_MERGING_DURATION = 1 * WEEK
DEFAULT_MAX_ACCOUNT_MERGING_DURATION = 4 * WEEK
DEFAULT_SETUP_DURATION = 8 * WEEK

FIRST_ENTRY_ID = 1
DEFAULT_PAGE_SIZE = 50
