from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from typing import Any, Protocol

import psycopg2

from ..models.transaction_record import COLUMN_TYPES, RECORD_COLUMNS, TransactionRecord
from .batch_write import BatchMetrics, BatchWriteError, batch_insert, batch_update
from .errors import StorageError
from .schema import TRANSACTIONS_TABLE

"""Storage port for procurement transactions.

The reconciliation engine talks to :class:`TransactionStore`; the PostgreSQL
implementation commits after each write so that a chunk, once applied, stays
applied even if a later chunk fails.
"""

__all__ = [
    "TransactionStore",
    "PostgresTransactionStore",
]

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    def load_row_hashes(self) -> dict[int, str]: ...

    def insert_records(self, records: Sequence[TransactionRecord]) -> int: ...

    def update_records(self, records: Sequence[TransactionRecord]) -> int: ...

    def delete_row_numbers(self, row_numbers: Collection[int]) -> int: ...


class PostgresTransactionStore:
    """TransactionStore backed by the ``procurement_transactions`` table."""

    def __init__(
        self,
        conn: Any,
        *,
        table: str = TRANSACTIONS_TABLE,
        page_size: int = 1000,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self.conn = conn
        self.table = table
        self.page_size = page_size
        self.metrics_callback = metrics_callback

    def _fail(self, action: str, e: Exception) -> StorageError:
        try:
            self.conn.rollback()
        except psycopg2.Error:
            logger.warning(f"rollback after failed {action} also failed")
        return StorageError(f"{action} failed: {e}")

    def load_row_hashes(self) -> dict[int, str]:
        """Full ``{row_number: row_hash}`` snapshot of the stored table."""
        try:
            with self.conn.cursor() as cur:
                cur.execute(f"SELECT row_number, row_hash FROM {self.table}")
                rows = cur.fetchall()
            self.conn.commit()
        except psycopg2.Error as e:
            raise self._fail("loading row hashes", e) from e
        return {int(row_number): row_hash for row_number, row_hash in rows}

    def insert_records(self, records: Sequence[TransactionRecord]) -> int:
        if not records:
            return 0
        try:
            with self.conn.cursor() as cur:
                result = batch_insert(
                    cur,
                    self.table,
                    RECORD_COLUMNS,
                    (r.to_row() for r in records),
                    page_size=self.page_size,
                    metrics_callback=self.metrics_callback,
                )
            self.conn.commit()
        except (BatchWriteError, psycopg2.Error) as e:
            raise self._fail("insert", e) from e
        return result.affected_rows

    def update_records(self, records: Sequence[TransactionRecord]) -> int:
        if not records:
            return 0
        try:
            with self.conn.cursor() as cur:
                result = batch_update(
                    cur,
                    self.table,
                    "row_number",
                    RECORD_COLUMNS,
                    (r.to_row() for r in records),
                    COLUMN_TYPES,
                    page_size=self.page_size,
                    metrics_callback=self.metrics_callback,
                )
            self.conn.commit()
        except (BatchWriteError, psycopg2.Error) as e:
            raise self._fail("update", e) from e
        return result.affected_rows

    def delete_row_numbers(self, row_numbers: Collection[int]) -> int:
        if not row_numbers:
            return 0
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.table} WHERE row_number = ANY(%s)",
                    (sorted(row_numbers),),
                )
                deleted = cur.rowcount
            self.conn.commit()
        except psycopg2.Error as e:
            raise self._fail("delete", e) from e
        return deleted
