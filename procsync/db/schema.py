"""
PostgreSQL schema for the procurement sync.

Tables:
- procurement_transactions: one row per populated sheet row, keyed by the
  sheet row number (natural key, not a sequence) with the raw-row hash used
  for change detection
- sync_runs: the run ledger, one row per sync attempt
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg2

from .errors import StorageError

logger = logging.getLogger(__name__)

TRANSACTIONS_TABLE = "procurement_transactions"
RUNS_TABLE = "sync_runs"

CREATE_TRANSACTIONS_TABLE = f"""
CREATE TABLE IF NOT EXISTS {TRANSACTIONS_TABLE} (
    id BIGSERIAL PRIMARY KEY,
    row_number INTEGER NOT NULL UNIQUE,
    date TIMESTAMPTZ,
    reference TEXT,
    status TEXT,
    contact_code TEXT,
    vendor TEXT,
    item_number INTEGER,
    product_code TEXT,
    product_name TEXT,
    account_chart TEXT,
    description TEXT,
    quantity NUMERIC,
    unit TEXT,
    price NUMERIC,
    discount NUMERIC,
    total_price NUMERIC,
    tax_type TEXT,
    vat_amount NUMERIC,
    withholding_tax NUMERIC,
    total_with_vat NUMERIC,
    major_group TEXT,
    minor_group TEXT,
    percentage NUMERIC,
    payment TEXT,
    po_number TEXT,
    url TEXT,
    row_hash TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

CREATE_RUNS_TABLE = f"""
CREATE TABLE IF NOT EXISTS {RUNS_TABLE} (
    id BIGSERIAL PRIMARY KEY,
    status TEXT NOT NULL CHECK (status IN ('running', 'completed', 'failed')),
    started_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    heartbeat_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    total_rows INTEGER NOT NULL DEFAULT 0,
    inserted_rows INTEGER NOT NULL DEFAULT 0,
    updated_rows INTEGER NOT NULL DEFAULT 0,
    deleted_rows INTEGER NOT NULL DEFAULT 0,
    error_message TEXT
)
"""

# Ledgers created before run heartbeats existed
ADD_HEARTBEAT_COLUMN = f"ALTER TABLE {RUNS_TABLE} ADD COLUMN IF NOT EXISTS heartbeat_at TIMESTAMPTZ"

CREATE_INDEXES = (
    f"CREATE INDEX IF NOT EXISTS idx_{TRANSACTIONS_TABLE}_date ON {TRANSACTIONS_TABLE} (date)",
    f"CREATE INDEX IF NOT EXISTS idx_{TRANSACTIONS_TABLE}_vendor ON {TRANSACTIONS_TABLE} (vendor)",
    f"CREATE INDEX IF NOT EXISTS idx_{RUNS_TABLE}_started_at ON {RUNS_TABLE} (started_at DESC)",
)

SCHEMA_STATEMENTS = (CREATE_TRANSACTIONS_TABLE, CREATE_RUNS_TABLE, ADD_HEARTBEAT_COLUMN, *CREATE_INDEXES)


def ensure_schema(conn: Any) -> None:
    """Create the sync tables and indexes if they do not exist yet."""
    try:
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        raise StorageError(f"schema creation failed: {e}") from e
    logger.info(f"schema ready: {TRANSACTIONS_TABLE}, {RUNS_TABLE}")
