from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT / UPDATE helpers on psycopg2.extras.execute_values.

Both helpers send one statement per ``page_size`` rows. Bulk UPDATE joins the
target table against a VALUES list; the VALUES template carries explicit casts
because PostgreSQL cannot infer a type for a column that is all NULL.

Table and column names are trusted identifiers from the schema module, never
user input.
"""

__all__ = [
    "BatchWriteError",
    "BatchMetrics",
    "WriteResult",
    "batch_insert",
    "batch_update",
]


class BatchWriteError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for a single batched statement."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class WriteResult:
    affected_rows: int


def _run_timed(
    cursor: Any,
    sql: str,
    rows_list: list[Sequence[Any]],
    template: str | None,
    page_size: int,
    metrics_callback: Callable[[BatchMetrics], None] | None,
    fetch: bool = False,
) -> list[tuple[Any, ...]] | None:
    start_time = time.time()
    try:
        return execute_values(cursor, sql, rows_list, template=template, page_size=page_size, fetch=fetch)
    except Exception as e:
        raise BatchWriteError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> WriteResult:
    """Perform a batched INSERT.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table
    columns: insert columns, in the order of each row's values
    rows: row value sequences
    page_size: rows per statement
    metrics_callback: receives BatchMetrics once per call; not invoked for an
        empty ``rows``
    """
    rows_list = list(rows)
    if not rows_list:
        return WriteResult(affected_rows=0)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    _run_timed(cursor, sql, rows_list, None, page_size, metrics_callback)
    return WriteResult(affected_rows=len(rows_list))


def batch_update(
    cursor: Any,
    table: str,
    key_column: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    column_types: Mapping[str, str],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
    touch_column: str | None = "updated_at",
) -> WriteResult:
    """Perform a batched UPDATE keyed on ``key_column``.

    ``columns`` must contain ``key_column``; every other column is assigned
    from the matching VALUES entry. ``touch_column`` is set to now().
    Raises BatchWriteError when any key has no row in ``table``; the caller
    rolls the statement back.
    """
    if key_column not in columns:
        raise BatchWriteError(f"key column {key_column!r} missing from update columns")
    rows_list = list(rows)
    if not rows_list:
        return WriteResult(affected_rows=0)

    try:
        template = "(" + ",".join(f"%s::{column_types[c]}" for c in columns) + ")"
    except KeyError as e:
        raise BatchWriteError(f"no column type for {e.args[0]!r}") from e

    assignments = [f'"{c}" = v."{c}"' for c in columns if c != key_column]
    if touch_column:
        assignments.append(f'"{touch_column}" = now()')
    alias_cols = ",".join(f'"{c}"' for c in columns)
    sql = (
        f"UPDATE {table} AS t SET {', '.join(assignments)} "
        f"FROM (VALUES %s) AS v ({alias_cols}) "
        f'WHERE t."{key_column}" = v."{key_column}" '
        f'RETURNING t."{key_column}"'
    )
    # cursor.rowcount covers the last page only; RETURNING rows are collected across pages
    returned = _run_timed(cursor, sql, rows_list, template, page_size, metrics_callback, fetch=True) or []
    if len(returned) != len(rows_list):
        raise BatchWriteError(
            f"update matched {len(returned)} of {len(rows_list)} rows in {table}; "
            f"target rows are missing"
        )
    return WriteResult(affected_rows=len(returned))
