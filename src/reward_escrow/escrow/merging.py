"""
Account merging window.

A time-boxed administrative window during which an account may nominate
another account to take over its vesting entries:

    Closed --start(now)--> Open --(now >= end_time)--> Closed

The window counts as open only while ``merging_open`` is set and ``now`` is
before ``merging_end_time``; an expired window can be started again. A
window that was never opened and an expired one are reported identically.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from reward_escrow.core.constants import (
    DEFAULT_ACCOUNT_MERGING_DURATION,
    DEFAULT_MAX_ACCOUNT_MERGING_DURATION,
)
from reward_escrow.core.exceptions import (
    InvalidDurationError,
    MergeWindowClosedError,
    MergeWindowOpenError,
)

logger = logging.getLogger(__name__)


class AccountMergingWindow:
    """Merge window state plus the pending nominations it governs."""

    def __init__(
        self,
        account_merging_duration: int = DEFAULT_ACCOUNT_MERGING_DURATION,
        max_account_merging_duration: int = DEFAULT_MAX_ACCOUNT_MERGING_DURATION,
    ) -> None:
        self.max_account_merging_duration = max_account_merging_duration
        self.account_merging_duration = self._validate_duration(account_merging_duration)
        self.merging_open = False
        self.merging_end_time = 0
        self._nominated_receivers: Dict[str, str] = {}

    def _validate_duration(self, duration: int) -> int:
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise InvalidDurationError("Merging duration must be an integer number of seconds")
        if duration <= 0 or duration > self.max_account_merging_duration:
            raise InvalidDurationError("exceeds max merging duration")
        return duration

    def is_open(self, now: int) -> bool:
        return self.merging_open and now < self.merging_end_time

    def require_open(self, now: int) -> None:
        """
        Raises:
            MergeWindowClosedError: If the window is not open at ``now``
        """
        if not self.is_open(now):
            raise MergeWindowClosedError(
                "Account merging has ended",
                details={"merging_end_time": self.merging_end_time, "now": now},
            )

    def start(self, now: int) -> int:
        """
        Open the window for ``account_merging_duration`` seconds.

        Returns:
            The window's end time

        Raises:
            MergeWindowOpenError: If the window is already open
        """
        if self.is_open(now):
            raise MergeWindowOpenError("Account merging window is already open")
        self.merging_open = True
        self.merging_end_time = now + self.account_merging_duration
        logger.info(
            "Account merging window started",
            extra={
                "event": "merging.window_started",
                "start_time": now,
                "end_time": self.merging_end_time,
            },
        )
        return self.merging_end_time

    def set_duration(self, duration: int, now: int) -> None:
        """
        Change the length of the next window.

        Raises:
            MergeWindowOpenError: If the window is currently open
            InvalidDurationError: If duration is zero or above the cap
        """
        if self.is_open(now):
            raise MergeWindowOpenError("Cannot change merging duration while merging is open")
        self.account_merging_duration = self._validate_duration(duration)
        logger.info(
            "Account merging duration updated",
            extra={"event": "merging.duration_updated", "duration": duration},
        )

    # ==================== Nominations ====================

    def nominate(self, account: str, destination: str) -> None:
        self._nominated_receivers[account] = destination

    def nominated_receiver(self, account: str) -> Optional[str]:
        return self._nominated_receivers.get(account)

    def clear_nomination(self, account: str) -> Optional[str]:
        return self._nominated_receivers.pop(account, None)

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merging_open": self.merging_open,
            "merging_end_time": self.merging_end_time,
            "account_merging_duration": self.account_merging_duration,
            "max_account_merging_duration": self.max_account_merging_duration,
            "nominated_receivers": dict(self._nominated_receivers),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountMergingWindow":
        window = cls(
            account_merging_duration=int(data.get("account_merging_duration", DEFAULT_ACCOUNT_MERGING_DURATION)),
            max_account_merging_duration=int(
                data.get("max_account_merging_duration", DEFAULT_MAX_ACCOUNT_MERGING_DURATION)
            ),
        )
        window.merging_open = bool(data.get("merging_open", False))
        window.merging_end_time = int(data.get("merging_end_time", 0))
        window._nominated_receivers = dict(data.get("nominated_receivers", {}))
        return window
