from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the sheet -> PostgreSQL sync.

These are built by ``procsync.config.loader`` after schema validation and
environment overrides. Everything downstream receives these typed objects,
never the raw YAML mapping.
"""


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class SheetSourceConfig:
    """Where the sheet rows come from.

    ``kind`` selects the adapter: ``google`` reads the live spreadsheet through
    the Sheets API, ``excel`` reads an exported workbook from disk.
    """
    kind: str = "google"
    spreadsheet_id: str | None = None
    range: str = "Sheet1"
    credentials_file: str | None = None  # Service account JSON (else env pair)
    excel_path: str | None = None
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class SyncSettings:
    batch_size: int = 1000  # Rows per fetch/process chunk
    lease_seconds: int = 7200  # After this a `running` run counts as abandoned
    schedule_interval_seconds: int = 3600


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    api_key: str | None = None  # Bearer token required by POST /api/sync


@dataclass(frozen=True)
class SyncConfig:
    """Root configuration object for the sync process."""
    sheet: SheetSourceConfig
    database: DatabaseConfig
    sync: SyncSettings = field(default_factory=SyncSettings)
    server: ServerConfig = field(default_factory=ServerConfig)
    header_aliases: dict[str, tuple[str, ...]] = field(default_factory=dict)
