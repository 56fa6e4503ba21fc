"""
Prometheus metrics for the reward escrow.

``EscrowMetrics`` subscribes to an escrow's event bus and turns committed
events into counters, and tracks the escrowed balance as a gauge.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from reward_escrow.escrow.events import (
    AccountMerged,
    BurnedForMigration,
    EscrowEvent,
    NominateAccountToMerge,
    Vested,
    VestingEntriesImported,
    VestingEntryCreated,
)
from reward_escrow.escrow.reward_escrow import RewardEscrow


class EscrowMetrics:
    """Metrics for escrow vesting, issuance and merging."""

    def __init__(self, escrow: RewardEscrow, registry: CollectorRegistry | None = None):
        self.escrow = escrow
        self.registry = registry or CollectorRegistry()

        self.vested_total = Counter(
            'reward_escrow_vested_total',
            'Total value released to beneficiaries in base units',
            registry=self.registry
        )

        self.vest_operations = Counter(
            'reward_escrow_vest_operations_total',
            'Number of vest calls that released tokens',
            registry=self.registry
        )

        self.entries_created = Counter(
            'reward_escrow_entries_created_total',
            'Vesting entries created',
            ['source'],
            registry=self.registry
        )

        self.escrowed_value_created = Counter(
            'reward_escrow_escrowed_value_created_total',
            'Value placed into escrow in base units',
            ['source'],
            registry=self.registry
        )

        self.merges = Counter(
            'reward_escrow_account_merges_total',
            'Completed account merges',
            registry=self.registry
        )

        self.nominations = Counter(
            'reward_escrow_merge_nominations_total',
            'Account merge nominations',
            registry=self.registry
        )

        self.migrated_total = Counter(
            'reward_escrow_migrated_total',
            'Value burned for migration in base units',
            registry=self.registry
        )

        self.total_escrowed = Gauge(
            'reward_escrow_total_escrowed_balance',
            'Tokens currently held in escrow',
            registry=self.registry
        )
        self.total_escrowed.set_function(lambda: self.escrow.total_escrowed_balance)

        escrow.events.subscribe(self.observe)

    def observe(self, event: EscrowEvent) -> None:
        if isinstance(event, Vested):
            self.vested_total.inc(event.value)
            self.vest_operations.inc()
        elif isinstance(event, VestingEntryCreated):
            self.entries_created.labels(source='issuance').inc()
            self.escrowed_value_created.labels(source='issuance').inc(event.value)
        elif isinstance(event, VestingEntriesImported):
            self.entries_created.labels(source='import').inc(event.count)
            self.escrowed_value_created.labels(source='import').inc(event.total_amount)
        elif isinstance(event, AccountMerged):
            self.merges.inc()
        elif isinstance(event, NominateAccountToMerge):
            self.nominations.inc()
        elif isinstance(event, BurnedForMigration):
            self.migrated_total.inc(event.escrowed_amount_migrated)

    def close(self) -> None:
        self.escrow.events.unsubscribe(self.observe)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
