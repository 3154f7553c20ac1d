from __future__ import annotations

import statistics
from dataclasses import dataclass

from .sync_run import SyncCounts

"""Sync result models.

SyncResult is what the reconciliation engine hands back to its caller: the
ledger counters plus timing figures for the SUMMARY line.
"""


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one successful reconciliation run."""
    run_id: int
    total_rows: int  # Data rows in the sheet (blank rows included)
    inserted_rows: int
    updated_rows: int
    deleted_rows: int
    elapsed_seconds: float
    total_batches: int = 0  # Chunks written
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def counts(self) -> SyncCounts:
        return SyncCounts(
            total_rows=self.total_rows,
            inserted_rows=self.inserted_rows,
            updated_rows=self.updated_rows,
            deleted_rows=self.deleted_rows,
        )

    @property
    def changed(self) -> bool:
        return bool(self.inserted_rows or self.updated_rows or self.deleted_rows)


class BatchStatsAccumulator:
    """Collects per-chunk timings and summarises them for SyncResult."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 19th of 20 inclusive quantiles
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
