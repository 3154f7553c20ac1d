from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping, Sequence

from ..db.errors import LedgerInvariantError, RunInProgressError, StorageError
from ..db.run_ledger import RunLedger
from ..db.transaction_store import TransactionStore
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord
from ..models.processing_result import BatchStatsAccumulator, SyncResult
from ..models.sync_run import SyncCounts, SyncRun
from ..models.transaction_record import TransactionRecord
from ..sheets.fingerprint import compute_row_hash
from ..sheets.header_map import DEFAULT_HEADER_ALIASES
from ..sheets.normalizer import build_header_index, is_blank_row, missing_fields, normalize_row
from ..sheets.source import SheetSource
from .progress import RowProgress

"""Sheet -> database reconciliation.

One call to ``ReconciliationEngine.sync()`` makes the stored transaction table
match the sheet:

    1. open a ledger run (single-flight: in-process lock + ledger lease)
    2. fetch header + rows; an empty sheet completes with zero counts
    3. load the full {row_number: row_hash} baseline
    4. walk rows in chunks; row_number = position + 2; new -> insert,
       changed hash -> update, equal hash -> nothing; blank rows are skipped
       but still count as seen; the ledger lease is renewed after each chunk
    5. delete baseline rows that were not seen
    6. complete the run

Identity is positional. Removing a row from the middle of the sheet deletes
the last row number and rewrites every row below the gap.

A populated row that becomes blank is neither updated nor deleted; the stored
record keeps its old values until the row is filled again or removed.

Chunks are committed as they go. A failure leaves earlier chunks in place,
marks the run failed and raises SyncError; the next run picks up whatever is
still different. An interrupt (KeyboardInterrupt, SystemExit) also marks the
run failed before it propagates. A run whose lease was taken over by another
process stops at the next chunk with LedgerInvariantError.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "SyncError",
    "SyncInProgressError",
    "SyncCancelledError",
    "ReconciliationEngine",
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


class SyncError(Exception):
    """A sync run failed. ``cause`` is the underlying exception."""

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        run_id: int | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.run_id = run_id
        self.stage = stage


class SyncInProgressError(Exception):
    """Another run is active; this invocation did nothing."""


class SyncCancelledError(Exception):
    """Cooperative cancellation was requested between chunks."""


class ReconciliationEngine:
    """Converge the transaction store onto the sheet source."""

    def __init__(
        self,
        source: SheetSource,
        store: TransactionStore,
        ledger: RunLedger,
        *,
        header_aliases: Mapping[str, Sequence[str]] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        run_lock: threading.Lock | None = None,
        error_log: ErrorLogBuffer | None = None,
        show_progress: bool = False,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.source = source
        self.store = store
        self.ledger = ledger
        self.header_aliases = header_aliases or DEFAULT_HEADER_ALIASES
        self.batch_size = batch_size
        self.error_log = error_log
        self.show_progress = show_progress
        self._run_lock = run_lock or threading.Lock()

    def sync(self, cancel_event: threading.Event | None = None) -> SyncResult:
        """Run one reconciliation pass.

        Raises:
            SyncInProgressError: another run holds the lock or a live ledger entry
            SyncError: the run started and failed; it is recorded as failed
        """
        if not self._run_lock.acquire(blocking=False):
            raise SyncInProgressError("a sync run is already in progress in this process")
        try:
            return self._sync_locked(cancel_event)
        finally:
            self._run_lock.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _sync_locked(self, cancel_event: threading.Event | None) -> SyncResult:
        started = time.monotonic()
        try:
            run = self.ledger.create_run()
        except RunInProgressError as e:
            raise SyncInProgressError(str(e)) from e
        except StorageError as e:
            self._record_error(-1, "create_run", e)
            raise SyncError(f"could not open sync run: {e}", cause=e, stage="create_run") from e

        logger.info(f"sync run {run.id} started")
        stage = "fetch"
        batch_stats = BatchStatsAccumulator()
        try:
            sheet = self.source.fetch()
            if sheet.is_empty:
                logger.info("sheet is empty; nothing to reconcile")
                counts = SyncCounts()
            else:
                logger.info(f"fetched {len(sheet.rows)} rows")
                header_index = build_header_index(sheet.headers, self.header_aliases)
                logger.debug(f"header index: {header_index}")
                absent = missing_fields(header_index, self.header_aliases)
                if absent:
                    logger.warning(f"headers not found, fields will be empty: {', '.join(absent)}")

                stage = "baseline"
                baseline = self.store.load_row_hashes()
                logger.debug(f"baseline holds {len(baseline)} stored rows")

                stage = "apply"
                inserted, updated, seen = self._apply_rows(
                    run.id, sheet.rows, header_index, baseline, batch_stats, cancel_event
                )

                stage = "delete"
                self._check_cancel(cancel_event)
                to_delete = baseline.keys() - seen
                deleted = self.store.delete_row_numbers(to_delete) if to_delete else 0
                if deleted:
                    logger.info(f"deleted {deleted} rows that no longer exist in sheet")

                counts = SyncCounts(
                    total_rows=len(sheet.rows),
                    inserted_rows=inserted,
                    updated_rows=updated,
                    deleted_rows=deleted,
                )

            stage = "finalize"
            self.ledger.complete_run(run.id, counts)
        except LedgerInvariantError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            self._fail_run(run, stage, e, message)
            raise SyncError(message, cause=e, run_id=run.id, stage=stage) from e
        except BaseException as e:
            # Ctrl-C or interpreter shutdown: close the ledger entry, then let it unwind
            self._fail_run(run, stage, e, "sync interrupted")
            raise

        total_batches, avg_batch, p95_batch = batch_stats.get_stats()
        result = SyncResult(
            run_id=run.id,
            total_rows=counts.total_rows,
            inserted_rows=counts.inserted_rows,
            updated_rows=counts.updated_rows,
            deleted_rows=counts.deleted_rows,
            elapsed_seconds=time.monotonic() - started,
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
        )
        logger.info(
            f"sync run {run.id} completed: {counts.inserted_rows} inserted, "
            f"{counts.updated_rows} updated, {counts.deleted_rows} deleted"
        )
        return result

    def _apply_rows(
        self,
        run_id: int,
        rows: Sequence[Sequence[str]],
        header_index: Mapping[str, int],
        baseline: Mapping[int, str],
        batch_stats: BatchStatsAccumulator,
        cancel_event: threading.Event | None,
    ) -> tuple[int, int, set[int]]:
        inserted = 0
        updated = 0
        seen: set[int] = set()

        with RowProgress(len(rows), enabled=self.show_progress) as progress:
            for start in range(0, len(rows), self.batch_size):
                self._check_cancel(cancel_event)
                chunk = rows[start:start + self.batch_size]
                inserts: list[TransactionRecord] = []
                updates: list[TransactionRecord] = []

                for offset, row in enumerate(chunk):
                    row_number = start + offset + 2
                    seen.add(row_number)
                    if is_blank_row(row):
                        continue
                    row_hash = compute_row_hash(row)
                    stored_hash = baseline.get(row_number)
                    if stored_hash is None:
                        inserts.append(normalize_row(row, header_index, row_number, row_hash))
                    elif stored_hash != row_hash:
                        updates.append(normalize_row(row, header_index, row_number, row_hash))

                chunk_started = time.monotonic()
                inserted += self.store.insert_records(inserts)
                updated += self.store.update_records(updates)
                batch_stats.add_batch_time(time.monotonic() - chunk_started)
                self.ledger.heartbeat(run_id)

                progress.advance(len(chunk), inserted=inserted, updated=updated)
                logger.debug(f"processed rows {start + 1} to {start + len(chunk)}")

        return inserted, updated, seen

    @staticmethod
    def _check_cancel(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("sync cancelled")

    def _fail_run(self, run: SyncRun, stage: str, exc: BaseException, message: str) -> None:
        logger.error(f"sync run {run.id} failed during {stage}: {message}")
        try:
            self.ledger.fail_run(run.id, message)
        except StorageError as ledger_exc:
            logger.error(f"could not mark sync run {run.id} failed: {ledger_exc}")
        self._record_error(run.id, stage, exc)

    def _record_error(self, run_id: int, stage: str, exc: BaseException) -> None:
        if self.error_log is None:
            return
        self.error_log.append(ErrorRecord.from_exception(run_id, stage, exc))
        try:
            path = self.error_log.flush()
        except OSError as e:
            logger.warning(f"error log flush failed: {e}")
            return
        if path is not None:
            logger.info(f"error details appended to {path}")
