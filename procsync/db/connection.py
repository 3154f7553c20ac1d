from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import psycopg2

from ..models.config_models import DatabaseConfig
from .errors import StorageError

"""psycopg2 connection helpers.

Connection settings resolve in this order:
    1. DATABASE_URL / POSTGRES_URL / PGDSN (full DSN)
    2. ``database.dsn`` from the config file
    3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, each falling back
       to the matching ``database`` config value
"""

__all__ = [
    "resolve_dsn",
    "open_connection",
]

logger = logging.getLogger(__name__)


def resolve_dsn(db_cfg: DatabaseConfig, environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    dsn = env.get("DATABASE_URL") or env.get("POSTGRES_URL") or env.get("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn

    host = env.get("PGHOST", db_cfg.host or "localhost")
    port = env.get("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = env.get("PGUSER", db_cfg.user or "postgres")
    password = env.get("PGPASSWORD", db_cfg.password or "")
    database = env.get("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def open_connection(db_cfg: DatabaseConfig) -> Iterator[Any]:
    """Yield a psycopg2 connection with explicit transaction boundaries.

    The stores commit after every write; anything left open when the block
    exits is rolled back.
    """
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.Error as e:
        raise StorageError(f"database connection failed: {e}") from e
    conn.autocommit = False
    try:
        yield conn
    finally:
        if not conn.closed:
            try:
                conn.rollback()
            finally:
                conn.close()
