"""Treasury reconciliation of on-chain balances against the ledger."""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from coinedge.domain.models import AssetType, ReconciliationRecord, ReconciliationStatus
from coinedge.errors import InvalidStateTransition, RecordNotFound
from coinedge.infrastructure.repositories import ReconciliationRepository
from coinedge.money import to_decimal

# Discrepancies under 0.01% of the ledger balance count as matched
MATCH_TOLERANCE_PCT = Decimal("0.01")


def compare_balances(
    onchain_balance: Decimal, database_balance: Decimal
) -> tuple[Decimal, Decimal, ReconciliationStatus]:
    """Return (discrepancy, discrepancy_pct, status) for a pair of balances."""
    discrepancy = onchain_balance - database_balance
    if database_balance == 0:
        discrepancy_pct = Decimal("0")
    else:
        discrepancy_pct = abs(discrepancy / database_balance) * 100

    if discrepancy_pct < MATCH_TOLERANCE_PCT:
        status = ReconciliationStatus.MATCHED
    else:
        status = ReconciliationStatus.DISCREPANCY
    return discrepancy, discrepancy_pct, status


class ReconciliationEngine:
    def __init__(
        self,
        repository: ReconciliationRepository,
        on_discrepancy: Callable[[ReconciliationRecord], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._repository = repository
        self._on_discrepancy = on_discrepancy
        self._clock = clock or (lambda: datetime.now(UTC))
        self._logger = logger or logging.getLogger("coinedge.reconciliation")

    def record_reconciliation(
        self,
        asset_type: AssetType | str,
        onchain_balance: str | int | float | Decimal,
        database_balance: str | int | float | Decimal,
        notes: str | None = None,
        created_by: str | None = None,
    ) -> ReconciliationRecord:
        """Compare balances, persist the result and raise an alert on discrepancy."""
        onchain = to_decimal(onchain_balance)
        database = to_decimal(database_balance)
        discrepancy, discrepancy_pct, status = compare_balances(onchain, database)

        record = self._repository.add(
            ReconciliationRecord(
                asset_type=AssetType(asset_type),
                onchain_balance=onchain,
                database_balance=database,
                discrepancy=discrepancy,
                discrepancy_pct=discrepancy_pct,
                status=status,
                created_at=self._clock(),
                notes=notes,
                created_by=created_by,
            )
        )

        if record.is_alert:
            self._logger.error(
                f"DISCREPANCY {record.asset_type.value}: on-chain {onchain} vs "
                f"ledger {database} ({discrepancy:+} / {discrepancy_pct:.4f}%)"
            )
            if self._on_discrepancy:
                self._on_discrepancy(record)
        else:
            self._logger.info(
                f"Reconciliation {record.asset_type.value} matched ({discrepancy_pct:.4f}%)"
            )

        return record

    def resolve_discrepancy(
        self,
        record_id: UUID,
        notes: str | None = None,
        resolved_by: str | None = None,
    ) -> ReconciliationRecord:
        """Mark a DISCREPANCY record RESOLVED. Any other status is rejected."""
        record = self._repository.get(record_id)
        if record is None:
            raise RecordNotFound(f"Reconciliation record {record_id} not found")

        if record.status != ReconciliationStatus.DISCREPANCY:
            raise InvalidStateTransition(
                f"Cannot resolve a {record.status.value} record, "
                f"only {ReconciliationStatus.DISCREPANCY.value} records can be resolved"
            )

        resolved = replace(
            record,
            status=ReconciliationStatus.RESOLVED,
            resolved_at=self._clock(),
            resolved_by=resolved_by,
            notes=notes if notes is not None else record.notes,
        )
        self._repository.update(resolved)
        self._logger.info(f"Discrepancy {record_id} marked as resolved by {resolved_by}")
        return resolved

    def latest_by_asset(self) -> dict[AssetType, ReconciliationRecord]:
        """Most recent record per asset type. Older records are never merged in."""
        return {record.asset_type: record for record in self._repository.latest_by_asset()}

    def recent(self, limit: int = 100) -> list[ReconciliationRecord]:
        return self._repository.list_recent(limit)
