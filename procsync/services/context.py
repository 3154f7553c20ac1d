from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass

from ..db.connection import open_connection
from ..db.run_ledger import PostgresRunLedger, RunLedger
from ..db.transaction_store import PostgresTransactionStore
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import SyncConfig
from ..sheets.source import SheetSource, build_source
from .reconciler import ReconciliationEngine

"""Wiring of the engine's collaborators.

Each context owns one database connection. The CLI opens one per command; the
HTTP app opens one per request. Every context built from the same factory
shares the process-wide run lock, so the scheduler and request handlers
cannot overlap.
"""

__all__ = [
    "SyncContext",
    "ContextFactory",
    "open_sync_context",
    "make_context_factory",
]


@dataclass
class SyncContext:
    engine: ReconciliationEngine
    ledger: RunLedger


ContextFactory = Callable[[], AbstractContextManager[SyncContext]]


@contextmanager
def open_sync_context(
    config: SyncConfig,
    *,
    run_lock: threading.Lock | None = None,
    source: SheetSource | None = None,
    error_log: ErrorLogBuffer | None = None,
    show_progress: bool = False,
) -> Iterator[SyncContext]:
    with open_connection(config.database) as conn:
        store = PostgresTransactionStore(conn, page_size=config.sync.batch_size)
        ledger = PostgresRunLedger(conn, lease_seconds=config.sync.lease_seconds)
        engine = ReconciliationEngine(
            source or build_source(config.sheet),
            store,
            ledger,
            header_aliases=config.header_aliases,
            batch_size=config.sync.batch_size,
            run_lock=run_lock,
            error_log=error_log if error_log is not None else ErrorLogBuffer(),
            show_progress=show_progress,
        )
        yield SyncContext(engine=engine, ledger=ledger)


def make_context_factory(config: SyncConfig, run_lock: threading.Lock | None = None) -> ContextFactory:
    """Factory of contexts that all share ``run_lock`` and one error log file."""
    lock = run_lock or threading.Lock()
    error_log = ErrorLogBuffer()

    def factory() -> AbstractContextManager[SyncContext]:
        return open_sync_context(config, run_lock=lock, error_log=error_log)

    return factory
