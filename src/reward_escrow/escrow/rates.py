"""
Release-rate and claimable-amount arithmetic for linear vesting entries.

All functions are pure and work on integer base units, rounding down.
The rate is derived from the immutable escrow amount and duration, so it
does not drift as partial claims reduce the remaining amount. Any rounding
remainder is released in full once the entry's end time is reached.
"""

from __future__ import annotations

from reward_escrow.escrow.entry_store import VestingEntry


def rate_per_second(entry: VestingEntry) -> int:
    """Base units released per second, rounded down."""
    return entry.escrow_amount // entry.duration


def time_since_last_vested(entry: VestingEntry, now: int) -> int:
    """
    Seconds of the schedule elapsed since the last claim.

    Measured from the later of the last claim and the entry's start, up to
    the earlier of ``now`` and the end time; never negative.
    """
    start = max(entry.last_vested, entry.start_time)
    return max(0, min(now, entry.end_time) - start)


def claimable(entry: VestingEntry, now: int) -> int:
    """
    Amount that can be vested from ``entry`` at ``now``.

    Once ``now`` reaches the end time the whole remaining amount is
    claimable, which flushes any dust left by the rounded-down rate.
    """
    if entry.remaining_amount == 0:
        return 0
    if now >= entry.end_time:
        return entry.remaining_amount
    released = rate_per_second(entry) * time_since_last_vested(entry, now)
    return min(entry.remaining_amount, released)
