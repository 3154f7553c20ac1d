# Shared pytest fixtures: temp workdir, config files, in-memory engine collaborators
from __future__ import annotations

import itertools
import tempfile
from collections.abc import Collection, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from procsync.db.errors import LedgerInvariantError, RunInProgressError, StorageError
from procsync.logging.init import reset_logging
from procsync.models.sheet_data import SheetData
from procsync.models.sync_run import RunStatus, SyncCounts, SyncRun
from procsync.models.transaction_record import TransactionRecord
from procsync.services.reconciler import ReconciliationEngine
from procsync.sheets.header_map import DEFAULT_HEADER_ALIASES

# First (Thai) header text of every canonical field, in field order
HEADERS: list[str] = [texts[0] for texts in DEFAULT_HEADER_ALIASES.values()]
FIELD_ORDER: list[str] = list(DEFAULT_HEADER_ALIASES)


def make_row(**values: str) -> list[str]:
    """Sheet row aligned to HEADERS; unspecified cells are empty."""
    return [values.get(name, "") for name in FIELD_ORDER]


class FakeSource:
    def __init__(self, headers: Sequence[str] | None = None, rows: Sequence[Sequence[str]] | None = None) -> None:
        self.headers = list(headers) if headers is not None else list(HEADERS)
        self.rows = [list(r) for r in rows or []]
        self.error: BaseException | None = None
        self.fetch_count = 0

    def fetch(self) -> SheetData:
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return SheetData(headers=list(self.headers), rows=[list(r) for r in self.rows])


class EmptySource:
    def fetch(self) -> SheetData:
        return SheetData()


class InMemoryTransactionStore:
    """Dict-backed store with the same contract as the PostgreSQL one."""

    def __init__(self) -> None:
        self.records: dict[int, TransactionRecord] = {}
        self.fail_on: str | None = None
        self.insert_calls: list[int] = []
        self.update_calls: list[int] = []
        self.delete_calls: list[list[int]] = []

    def _maybe_fail(self, action: str) -> None:
        if self.fail_on == action:
            raise StorageError(f"{action} failed: simulated outage")

    def load_row_hashes(self) -> dict[int, str]:
        self._maybe_fail("load")
        return {n: r.row_hash for n, r in self.records.items()}

    def insert_records(self, records: Sequence[TransactionRecord]) -> int:
        if not records:
            return 0
        self._maybe_fail("insert")
        for r in records:
            if r.row_number in self.records:
                raise StorageError(f"duplicate row_number {r.row_number}")
        for r in records:
            self.records[r.row_number] = r
        self.insert_calls.append(len(records))
        return len(records)

    def update_records(self, records: Sequence[TransactionRecord]) -> int:
        if not records:
            return 0
        self._maybe_fail("update")
        for r in records:
            self.records[r.row_number] = r
        self.update_calls.append(len(records))
        return len(records)

    def delete_row_numbers(self, row_numbers: Collection[int]) -> int:
        if not row_numbers:
            return 0
        self._maybe_fail("delete")
        self.delete_calls.append(sorted(row_numbers))
        deleted = 0
        for n in row_numbers:
            if self.records.pop(n, None) is not None:
                deleted += 1
        return deleted


class InMemoryRunLedger:
    """Run ledger that enforces the running -> terminal transition."""

    def __init__(self) -> None:
        self.runs: dict[int, SyncRun] = {}
        self._ids = itertools.count(1)
        self._base = datetime(2024, 1, 1, tzinfo=UTC)
        self.heartbeats: list[int] = []

    def create_run(self) -> SyncRun:
        for run in self.runs.values():
            if run.status is RunStatus.RUNNING:
                raise RunInProgressError(run.id)
        run_id = next(self._ids)
        run = SyncRun(id=run_id, status=RunStatus.RUNNING, started_at=self._base + timedelta(minutes=run_id))
        self.runs[run_id] = run
        return run

    def _finalize(self, run_id: int, **changes) -> SyncRun:
        run = self.runs[run_id]
        if run.status is not RunStatus.RUNNING:
            raise LedgerInvariantError(f"sync run {run_id} is not running; refusing to finalize")
        values = {**run.__dict__, **changes, "completed_at": run.started_at + timedelta(seconds=5)}
        updated = SyncRun(**values)
        self.runs[run_id] = updated
        return updated

    def complete_run(self, run_id: int, counts: SyncCounts) -> SyncRun:
        return self._finalize(run_id, status=RunStatus.COMPLETED, **counts.to_dict())

    def fail_run(self, run_id: int, message: str) -> SyncRun:
        return self._finalize(run_id, status=RunStatus.FAILED, error_message=message)

    def heartbeat(self, run_id: int) -> None:
        if self.runs[run_id].status is not RunStatus.RUNNING:
            raise LedgerInvariantError(f"sync run {run_id} is no longer running; its lease was lost")
        self.heartbeats.append(run_id)

    def get_last_run(self) -> SyncRun | None:
        runs = self.list_runs(limit=1)
        return runs[0] if runs else None

    def list_runs(self, limit: int = 50) -> list[SyncRun]:
        return sorted(self.runs.values(), key=lambda r: r.started_at, reverse=True)[:limit]


@pytest.fixture(autouse=True)
def _fresh_logging():
    # The procsync logger binds sys.stdout at setup; capsys swaps it per test
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """sheet:
  kind: google
  spreadsheet_id: sheet-abc
  range: Sheet1
sync:
  batch_size: 2
  lease_seconds: 600
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
server:
  port: 8080
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "sync.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def clean_env(monkeypatch):
    for name in (
        "GOOGLE_SHEET_ID",
        "SYNC_API_KEY",
        "PROCSYNC_CONFIG",
        "DATABASE_URL",
        "POSTGRES_URL",
        "PGDSN",
        "GOOGLE_SERVICE_ACCOUNT_EMAIL",
        "GOOGLE_PRIVATE_KEY",
        "GOOGLE_APPLICATION_CREDENTIALS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture()
def ledger() -> InMemoryRunLedger:
    return InMemoryRunLedger()


@pytest.fixture()
def make_engine(source: FakeSource, store: InMemoryTransactionStore, ledger: InMemoryRunLedger):
    def _make(**kwargs) -> ReconciliationEngine:
        kwargs.setdefault("batch_size", 2)
        return ReconciliationEngine(source, store, ledger, **kwargs)

    return _make


@pytest.fixture()
def row():
    """Builder for sheet rows aligned to the default headers."""
    return make_row


@pytest.fixture()
def headers() -> list[str]:
    return list(HEADERS)


@pytest.fixture()
def empty_source() -> EmptySource:
    return EmptySource()
