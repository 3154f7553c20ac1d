from __future__ import annotations

__all__ = [
    "StorageError",
    "LedgerInvariantError",
    "RunInProgressError",
]


class StorageError(Exception):
    """Reading or writing the transaction table or the run ledger failed."""


class LedgerInvariantError(StorageError):
    """A run that is no longer ``running`` was asked to finalize again.

    The engine finalizes each run exactly once, so this signals a programming
    defect rather than a condition to recover from.
    """


class RunInProgressError(StorageError):
    """The ledger already holds a live ``running`` entry."""

    def __init__(self, run_id: int) -> None:
        super().__init__(f"sync run {run_id} is already running")
        self.run_id = run_id
