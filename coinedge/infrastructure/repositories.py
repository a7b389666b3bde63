"""Repository interfaces and implementations for persistence."""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Optional
from uuid import UUID

from psycopg import Connection
from psycopg.rows import TupleRow
from psycopg_pool import ConnectionPool

from coinedge.domain.models import (
    AssetType,
    BankAccountLink,
    CheckoutSession,
    ReconciliationRecord,
    ReconciliationStatus,
)

Pool = ConnectionPool[Connection[TupleRow]]


class ReconciliationRepository(ABC):
    """Stores treasury reconciliation records."""

    @abstractmethod
    def add(self, record: ReconciliationRecord) -> ReconciliationRecord:
        """Insert a record. Returns it with the generated ID."""
        ...

    @abstractmethod
    def get(self, record_id: UUID) -> Optional[ReconciliationRecord]:
        ...

    @abstractmethod
    def update(self, record: ReconciliationRecord) -> None:
        """Persist status/resolution fields of an existing record."""
        ...

    @abstractmethod
    def list_recent(self, limit: int | None = 100) -> list[ReconciliationRecord]:
        """Records ordered newest first. limit=None returns all."""
        ...

    @abstractmethod
    def latest_by_asset(self) -> list[ReconciliationRecord]:
        """The newest record of each asset type."""
        ...


class BankAccountRepository(ABC):
    """Stores bank accounts linked through the aggregator."""

    @abstractmethod
    def find_by_fingerprint(
        self, user_id: str, fingerprint: str
    ) -> Optional[BankAccountLink]:
        ...

    @abstractmethod
    def add(self, link: BankAccountLink) -> BankAccountLink:
        ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[BankAccountLink]:
        ...


class CheckoutRepository(ABC):
    """Audit trail of terminal checkout sessions."""

    @abstractmethod
    def save(self, session: CheckoutSession) -> None:
        """Insert or update the session keyed by checkout_id."""
        ...


class PostgresReconciliationRepository(ReconciliationRepository):
    """PostgreSQL implementation backed by coinedge.treasury_reconciliation."""

    _COLUMNS = """
        id, asset_type, onchain_balance, database_balance, discrepancy,
        discrepancy_pct, status, notes, created_at, created_by,
        resolved_at, resolved_by
    """

    def __init__(self, pool: Pool):
        self._pool = pool

    def add(self, record: ReconciliationRecord) -> ReconciliationRecord:
        with self._pool.connection() as conn:
            result = conn.execute(
                """
                INSERT INTO coinedge.treasury_reconciliation
                (asset_type, onchain_balance, database_balance, discrepancy,
                 discrepancy_pct, status, notes, created_at, created_by)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    record.asset_type.value,
                    record.onchain_balance,
                    record.database_balance,
                    record.discrepancy,
                    record.discrepancy_pct,
                    record.status.value,
                    record.notes,
                    record.created_at,
                    record.created_by,
                ),
            )
            row = result.fetchone()
            if row is None:
                raise RuntimeError("Failed to insert reconciliation record")
            return _with_id(record, row[0])

    def get(self, record_id: UUID) -> Optional[ReconciliationRecord]:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {self._COLUMNS}
                    FROM coinedge.treasury_reconciliation
                    WHERE id = %s
                    """,
                    (record_id,),
                )
                row = cur.fetchone()
                return _record_from_row(row) if row is not None else None

    def update(self, record: ReconciliationRecord) -> None:
        with self._pool.connection() as conn:
            conn.execute(
                """
                UPDATE coinedge.treasury_reconciliation
                SET status = %s, notes = %s, resolved_at = %s, resolved_by = %s
                WHERE id = %s
                """,
                (
                    record.status.value,
                    record.notes,
                    record.resolved_at,
                    record.resolved_by,
                    record.id,
                ),
            )

    def list_recent(self, limit: int | None = 100) -> list[ReconciliationRecord]:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {self._COLUMNS}
                    FROM coinedge.treasury_reconciliation
                    ORDER BY created_at DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                return [_record_from_row(row) for row in cur.fetchall()]

    def latest_by_asset(self) -> list[ReconciliationRecord]:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT DISTINCT ON (asset_type) {self._COLUMNS}
                    FROM coinedge.treasury_reconciliation
                    ORDER BY asset_type, created_at DESC
                    """
                )
                return [_record_from_row(row) for row in cur.fetchall()]


class PostgresBankAccountRepository(BankAccountRepository):
    """PostgreSQL implementation backed by coinedge.user_bank_accounts."""

    def __init__(self, pool: Pool):
        self._pool = pool

    def find_by_fingerprint(
        self, user_id: str, fingerprint: str
    ) -> Optional[BankAccountLink]:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT account_id, user_id, bank_name, account_mask,
                           fingerprint, linked_at
                    FROM coinedge.user_bank_accounts
                    WHERE user_id = %s AND fingerprint = %s
                    """,
                    (user_id, fingerprint),
                )
                row = cur.fetchone()
                return BankAccountLink(*row) if row is not None else None

    def add(self, link: BankAccountLink) -> BankAccountLink:
        """
        Insert a linked account.

        The (user_id, fingerprint) unique constraint makes concurrent inserts
        of the same account collapse into one row.
        """
        with self._pool.connection() as conn:
            conn.execute(
                """
                INSERT INTO coinedge.user_bank_accounts
                (account_id, user_id, bank_name, account_mask, fingerprint, linked_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, fingerprint) DO NOTHING
                """,
                (
                    link.account_id,
                    link.user_id,
                    link.bank_name,
                    link.account_mask,
                    link.fingerprint,
                    link.linked_at,
                ),
            )
        return link

    def list_for_user(self, user_id: str) -> list[BankAccountLink]:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT account_id, user_id, bank_name, account_mask,
                           fingerprint, linked_at
                    FROM coinedge.user_bank_accounts
                    WHERE user_id = %s
                    ORDER BY linked_at DESC
                    """,
                    (user_id,),
                )
                return [BankAccountLink(*row) for row in cur.fetchall()]


class PostgresCheckoutRepository(CheckoutRepository):
    """PostgreSQL implementation backed by coinedge.checkout_sessions."""

    def __init__(self, pool: Pool):
        self._pool = pool

    def save(self, session: CheckoutSession) -> None:
        with self._pool.connection() as conn:
            conn.execute(
                """
                INSERT INTO coinedge.checkout_sessions
                (checkout_id, status, base_amount_cents, customer_pays_cents,
                 activation_event_id, attempt_count, payment_reference, error,
                 created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, now())
                ON CONFLICT (checkout_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    attempt_count = EXCLUDED.attempt_count,
                    payment_reference = EXCLUDED.payment_reference,
                    error = EXCLUDED.error,
                    updated_at = now()
                """,
                (
                    session.checkout_id,
                    session.status.value,
                    session.base_amount.to_minor_units(),
                    session.customer_pays.to_minor_units(),
                    session.activation_event_id,
                    session.attempt_count,
                    session.payment_reference,
                    session.error,
                    session.created_at,
                ),
            )


def _with_id(record: ReconciliationRecord, record_id: UUID) -> ReconciliationRecord:
    return replace(record, id=record_id)


def _record_from_row(row: tuple[Any, ...]) -> ReconciliationRecord:
    return ReconciliationRecord(
        id=row[0],
        asset_type=AssetType(row[1]),
        onchain_balance=row[2],
        database_balance=row[3],
        discrepancy=row[4],
        discrepancy_pct=row[5],
        status=ReconciliationStatus(row[6]),
        notes=row[7],
        created_at=row[8],
        created_by=row[9],
        resolved_at=row[10],
        resolved_by=row[11],
    )
