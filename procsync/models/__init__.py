"""Domain models for the sheet -> PostgreSQL procurement sync.

Frozen dataclasses shared by the sheet adapters, the storage layer, the
reconciliation engine and the trigger surfaces.
"""

from .config_models import DatabaseConfig, ServerConfig, SheetSourceConfig, SyncConfig, SyncSettings
from .error_record import ErrorRecord
from .processing_result import BatchStatsAccumulator, SyncResult
from .sheet_data import SheetData
from .sync_run import RunHistoryStats, RunStatus, SyncCounts, SyncRun
from .transaction_record import COLUMN_TYPES, RECORD_COLUMNS, TransactionRecord

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ServerConfig",
    "SheetSourceConfig",
    "SyncConfig",
    "SyncSettings",
    # Sheet / record models
    "SheetData",
    "TransactionRecord",
    "RECORD_COLUMNS",
    "COLUMN_TYPES",
    # Run ledger models
    "RunStatus",
    "SyncRun",
    "SyncCounts",
    "RunHistoryStats",
    "SyncResult",
    "BatchStatsAccumulator",
    "ErrorRecord",
]
