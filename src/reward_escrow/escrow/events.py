"""
Escrow event notifications.

Each mutating escrow operation publishes a message dataclass on the
escrow's ``EventBus`` after its state change has committed. Listeners are
off-engine consumers (indexers, metrics); a failing listener is logged and
never affects the operation that emitted the event.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscrowEvent:
    """Base class for escrow events."""

    event_type: ClassVar[str] = "EscrowEvent"

    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data


@dataclass(frozen=True)
class VestingEntryCreated(EscrowEvent):
    event_type: ClassVar[str] = "VestingEntryCreated"

    beneficiary: str = ""
    value: int = 0
    duration: int = 0
    entry_id: int = 0


@dataclass(frozen=True)
class Vested(EscrowEvent):
    event_type: ClassVar[str] = "Vested"

    beneficiary: str = ""
    value: int = 0


@dataclass(frozen=True)
class NominateAccountToMerge(EscrowEvent):
    event_type: ClassVar[str] = "NominateAccountToMerge"

    account: str = ""
    destination: str = ""


@dataclass(frozen=True)
class AccountMerged(EscrowEvent):
    event_type: ClassVar[str] = "AccountMerged"

    account_to_merge: str = ""
    destination: str = ""
    escrow_amount_merged: int = 0
    entry_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class AccountMergingStarted(EscrowEvent):
    event_type: ClassVar[str] = "AccountMergingStarted"

    end_time: int = 0


@dataclass(frozen=True)
class AccountMergingDurationUpdated(EscrowEvent):
    event_type: ClassVar[str] = "AccountMergingDurationUpdated"

    duration: int = 0


@dataclass(frozen=True)
class MaxEscrowDurationUpdated(EscrowEvent):
    event_type: ClassVar[str] = "MaxEscrowDurationUpdated"

    duration: int = 0


@dataclass(frozen=True)
class VestingEntriesImported(EscrowEvent):
    event_type: ClassVar[str] = "VestingEntriesImported"

    count: int = 0
    total_amount: int = 0
    entry_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class BurnedForMigration(EscrowEvent):
    event_type: ClassVar[str] = "BurnedForMigration"

    account: str = ""
    entry_ids: Tuple[int, ...] = ()
    escrowed_amount_migrated: int = 0


Listener = Callable[[EscrowEvent], None]


@dataclass
class EventBus:
    """Records emitted events and fans them out to subscribers."""

    history: List[EscrowEvent] = field(default_factory=list)
    listeners: List[Listener] = field(default_factory=list)

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def emit(self, event: EscrowEvent) -> EscrowEvent:
        self.history.append(event)
        logger.debug(
            "Escrow event emitted",
            extra={"event": "escrow.event_emitted", "event_type": event.event_type},
        )
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.error(
                    "Escrow event listener failed",
                    extra={
                        "event": "escrow.listener_failed",
                        "event_type": event.event_type,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
        return event

    def of_type(self, event_cls: Type[EscrowEvent]) -> List[EscrowEvent]:
        return [event for event in self.history if isinstance(event, event_cls)]

    def last(self, event_cls: Optional[Type[EscrowEvent]] = None) -> Optional[EscrowEvent]:
        events = self.history if event_cls is None else self.of_type(event_cls)
        return events[-1] if events else None

    def clear(self) -> None:
        self.history.clear()
