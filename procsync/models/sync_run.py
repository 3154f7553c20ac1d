from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

"""Run ledger models.

A SyncRun is the audit record of one reconciliation attempt. It is created in
``running`` state before any row is touched and moves exactly once to
``completed`` or ``failed``.
"""

__all__ = [
    "RunStatus",
    "SyncRun",
    "SyncCounts",
    "RunHistoryStats",
]


class RunStatus(Enum):
    """Lifecycle of a SyncRun.

    State transitions: running -> (completed | failed)
    """
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


@dataclass(frozen=True)
class SyncCounts:
    """The four counters reported by every successful run."""
    total_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    deleted_rows: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_rows": self.total_rows,
            "inserted_rows": self.inserted_rows,
            "updated_rows": self.updated_rows,
            "deleted_rows": self.deleted_rows,
        }


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class SyncRun:
    """Ledger entry for one sync attempt."""
    id: int
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    total_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    deleted_rows: int = 0
    error_message: str | None = None

    @property
    def counts(self) -> SyncCounts:
        return SyncCounts(
            total_rows=self.total_rows,
            inserted_rows=self.inserted_rows,
            updated_rows=self.updated_rows,
            deleted_rows=self.deleted_rows,
        )

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "total_rows": self.total_rows,
            "inserted_rows": self.inserted_rows,
            "updated_rows": self.updated_rows,
            "deleted_rows": self.deleted_rows,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class RunHistoryStats:
    """Aggregates over a window of recent runs (sync log overview)."""
    total: int
    completed: int
    failed: int
    total_inserted: int
    total_updated: int
    total_deleted: int

    @staticmethod
    def from_runs(runs: list[SyncRun]) -> RunHistoryStats:
        return RunHistoryStats(
            total=len(runs),
            completed=sum(1 for r in runs if r.status is RunStatus.COMPLETED),
            failed=sum(1 for r in runs if r.status is RunStatus.FAILED),
            total_inserted=sum(r.inserted_rows for r in runs),
            total_updated=sum(r.updated_rows for r in runs),
            total_deleted=sum(r.deleted_rows for r in runs),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "total_inserted": self.total_inserted,
            "total_updated": self.total_updated,
            "total_deleted": self.total_deleted,
        }
