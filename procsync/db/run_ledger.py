from __future__ import annotations

import logging
from typing import Any, Protocol

import psycopg2

from ..models.sync_run import RunStatus, SyncCounts, SyncRun
from .errors import LedgerInvariantError, RunInProgressError, StorageError
from .schema import RUNS_TABLE

"""Run ledger: one audit row per sync attempt.

A run is created ``running`` and finalized exactly once. Finalizing a run that
is no longer ``running`` raises LedgerInvariantError.

``create_run`` doubles as the cross-process single-flight guard. It locks the
ledger table for one short transaction, expires ``running`` rows whose last
heartbeat is older than the lease (left behind by a crashed process) and
refuses to open a second live run. A live run renews its lease with
``heartbeat`` between chunks, so a long sync is never expired mid-flight.
"""

__all__ = [
    "RunLedger",
    "PostgresRunLedger",
    "LEASE_EXPIRED_MESSAGE",
]

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "lease expired: run abandoned without finalizing"

_RUN_COLUMNS = (
    "id, status, started_at, completed_at, total_rows, inserted_rows, "
    "updated_rows, deleted_rows, error_message"
)


class RunLedger(Protocol):
    def create_run(self) -> SyncRun: ...

    def complete_run(self, run_id: int, counts: SyncCounts) -> SyncRun: ...

    def fail_run(self, run_id: int, message: str) -> SyncRun: ...

    def heartbeat(self, run_id: int) -> None: ...

    def get_last_run(self) -> SyncRun | None: ...

    def list_runs(self, limit: int = 50) -> list[SyncRun]: ...


def _row_to_run(row: tuple[Any, ...]) -> SyncRun:
    return SyncRun(
        id=int(row[0]),
        status=RunStatus(row[1]),
        started_at=row[2],
        completed_at=row[3],
        total_rows=row[4],
        inserted_rows=row[5],
        updated_rows=row[6],
        deleted_rows=row[7],
        error_message=row[8],
    )


class PostgresRunLedger:
    """RunLedger backed by the ``sync_runs`` table."""

    def __init__(self, conn: Any, *, table: str = RUNS_TABLE, lease_seconds: int = 7200) -> None:
        self.conn = conn
        self.table = table
        self.lease_seconds = lease_seconds

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except psycopg2.Error:
            logger.warning("ledger rollback failed")

    def create_run(self) -> SyncRun:
        try:
            with self.conn.cursor() as cur:
                cur.execute(f"LOCK TABLE {self.table} IN SHARE ROW EXCLUSIVE MODE")
                cur.execute(
                    f"UPDATE {self.table} SET status = 'failed', completed_at = now(), "
                    f"error_message = %s "
                    f"WHERE status = 'running' "
                    f"AND COALESCE(heartbeat_at, started_at) < now() - (%s * interval '1 second') "
                    f"RETURNING id",
                    (LEASE_EXPIRED_MESSAGE, self.lease_seconds),
                )
                for (expired_id,) in cur.fetchall():
                    logger.warning(f"run {expired_id} exceeded its lease; marked failed")
                cur.execute(
                    f"SELECT id FROM {self.table} WHERE status = 'running' "
                    f"ORDER BY started_at DESC LIMIT 1"
                )
                active = cur.fetchone()
                if active is not None:
                    self.conn.commit()
                    raise RunInProgressError(int(active[0]))
                cur.execute(
                    f"INSERT INTO {self.table} (status, started_at, heartbeat_at) "
                    f"VALUES ('running', now(), now()) "
                    f"RETURNING {_RUN_COLUMNS}"
                )
                row = cur.fetchone()
            self.conn.commit()
        except psycopg2.Error as e:
            self._rollback()
            raise StorageError(f"creating sync run failed: {e}") from e
        return _row_to_run(row)

    def _finalize(self, run_id: int, sql: str, params: tuple[Any, ...]) -> SyncRun:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            if row is None:
                self._rollback()
                raise LedgerInvariantError(f"sync run {run_id} is not running; refusing to finalize")
            self.conn.commit()
        except psycopg2.Error as e:
            self._rollback()
            raise StorageError(f"finalizing sync run {run_id} failed: {e}") from e
        return _row_to_run(row)

    def complete_run(self, run_id: int, counts: SyncCounts) -> SyncRun:
        return self._finalize(
            run_id,
            f"UPDATE {self.table} SET status = 'completed', completed_at = now(), "
            f"total_rows = %s, inserted_rows = %s, updated_rows = %s, deleted_rows = %s "
            f"WHERE id = %s AND status = 'running' RETURNING {_RUN_COLUMNS}",
            (
                counts.total_rows,
                counts.inserted_rows,
                counts.updated_rows,
                counts.deleted_rows,
                run_id,
            ),
        )

    def fail_run(self, run_id: int, message: str) -> SyncRun:
        return self._finalize(
            run_id,
            f"UPDATE {self.table} SET status = 'failed', completed_at = now(), error_message = %s "
            f"WHERE id = %s AND status = 'running' RETURNING {_RUN_COLUMNS}",
            (message, run_id),
        )

    def heartbeat(self, run_id: int) -> None:
        """Renew the lease of a live run.

        Raises LedgerInvariantError when the run is no longer ``running``,
        i.e. another process expired it; the caller must stop writing.
        """
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    f"UPDATE {self.table} SET heartbeat_at = now() "
                    f"WHERE id = %s AND status = 'running' RETURNING id",
                    (run_id,),
                )
                row = cur.fetchone()
            if row is None:
                self._rollback()
                raise LedgerInvariantError(f"sync run {run_id} is no longer running; its lease was lost")
            self.conn.commit()
        except psycopg2.Error as e:
            self._rollback()
            raise StorageError(f"renewing lease of sync run {run_id} failed: {e}") from e

    def get_last_run(self) -> SyncRun | None:
        runs = self.list_runs(limit=1)
        return runs[0] if runs else None

    def list_runs(self, limit: int = 50) -> list[SyncRun]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_RUN_COLUMNS} FROM {self.table} "
                    f"ORDER BY started_at DESC, id DESC LIMIT %s",
                    (limit,),
                )
                rows = cur.fetchall()
            self.conn.commit()
        except psycopg2.Error as e:
            self._rollback()
            raise StorageError(f"reading sync runs failed: {e}") from e
        return [_row_to_run(r) for r in rows]
