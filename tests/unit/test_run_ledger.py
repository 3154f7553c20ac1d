from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import psycopg2
import pytest

from procsync.db.errors import LedgerInvariantError, RunInProgressError, StorageError
from procsync.db.run_ledger import LEASE_EXPIRED_MESSAGE, PostgresRunLedger
from procsync.models.sync_run import RunStatus, SyncCounts

STARTED = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
DONE = datetime(2024, 5, 1, 10, 0, 30, tzinfo=UTC)


def _conn_with_cursor():
    conn = MagicMock()
    cur = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cur
    return conn, cur


def _executed(cur) -> list[str]:
    return [c.args[0] for c in cur.execute.call_args_list]


def test_create_run_inserts_running_row():
    conn, cur = _conn_with_cursor()
    cur.fetchall.return_value = []  # nothing expired
    cur.fetchone.side_effect = [None, (7, "running", STARTED, None, 0, 0, 0, 0, None)]
    run = PostgresRunLedger(conn, lease_seconds=600).create_run()

    assert run.id == 7
    assert run.status is RunStatus.RUNNING
    sqls = _executed(cur)
    assert sqls[0].startswith("LOCK TABLE sync_runs")
    assert "COALESCE(heartbeat_at, started_at) < now() - (%s * interval '1 second')" in sqls[1]
    assert cur.execute.call_args_list[1].args[1] == (LEASE_EXPIRED_MESSAGE, 600)
    assert sqls[3].startswith("INSERT INTO sync_runs (status, started_at, heartbeat_at)")
    conn.commit.assert_called_once()


def test_create_run_refuses_when_live_run_exists():
    conn, cur = _conn_with_cursor()
    cur.fetchall.return_value = []
    cur.fetchone.return_value = (3,)
    with pytest.raises(RunInProgressError) as exc_info:
        PostgresRunLedger(conn).create_run()
    assert exc_info.value.run_id == 3
    assert "sync run 3 is already running" in str(exc_info.value)
    assert not any(s.startswith("INSERT") for s in _executed(cur))


def test_create_run_expires_stale_runs_first():
    conn, cur = _conn_with_cursor()
    cur.fetchall.return_value = [(1,), (2,)]
    cur.fetchone.side_effect = [None, (3, "running", STARTED, None, 0, 0, 0, 0, None)]
    run = PostgresRunLedger(conn).create_run()
    assert run.id == 3


def test_create_run_database_error():
    conn, cur = _conn_with_cursor()
    cur.execute.side_effect = psycopg2.OperationalError("down")
    with pytest.raises(StorageError, match="creating sync run failed"):
        PostgresRunLedger(conn).create_run()
    conn.rollback.assert_called_once()


def test_complete_run_writes_counts():
    conn, cur = _conn_with_cursor()
    cur.fetchone.return_value = (7, "completed", STARTED, DONE, 10, 2, 3, 1, None)
    run = PostgresRunLedger(conn).complete_run(7, SyncCounts(10, 2, 3, 1))
    assert run.status is RunStatus.COMPLETED
    assert run.counts == SyncCounts(10, 2, 3, 1)
    sql, params = cur.execute.call_args.args
    assert "WHERE id = %s AND status = 'running'" in sql
    assert params == (10, 2, 3, 1, 7)
    conn.commit.assert_called_once()


def test_fail_run_records_message():
    conn, cur = _conn_with_cursor()
    cur.fetchone.return_value = (7, "failed", STARTED, DONE, 0, 0, 0, 0, "boom")
    run = PostgresRunLedger(conn).fail_run(7, "boom")
    assert run.status is RunStatus.FAILED
    assert run.error_message == "boom"
    assert cur.execute.call_args.args[1] == ("boom", 7)


def test_finalize_twice_raises_invariant_error():
    conn, cur = _conn_with_cursor()
    cur.fetchone.return_value = None
    with pytest.raises(LedgerInvariantError):
        PostgresRunLedger(conn).complete_run(7, SyncCounts())
    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()


def test_list_runs_newest_first_with_limit():
    conn, cur = _conn_with_cursor()
    cur.fetchall.return_value = [
        (2, "failed", DONE, DONE, 0, 0, 0, 0, "x"),
        (1, "completed", STARTED, DONE, 5, 5, 0, 0, None),
    ]
    runs = PostgresRunLedger(conn).list_runs(limit=2)
    assert [r.id for r in runs] == [2, 1]
    sql, params = cur.execute.call_args.args
    assert "ORDER BY started_at DESC" in sql
    assert params == (2,)


def test_get_last_run_empty():
    conn, cur = _conn_with_cursor()
    cur.fetchall.return_value = []
    assert PostgresRunLedger(conn).get_last_run() is None


def test_heartbeat_renews_live_run():
    conn, cur = _conn_with_cursor()
    cur.fetchone.return_value = (7,)
    PostgresRunLedger(conn).heartbeat(7)
    sql, params = cur.execute.call_args.args
    assert "SET heartbeat_at = now()" in sql
    assert "WHERE id = %s AND status = 'running'" in sql
    assert params == (7,)
    conn.commit.assert_called_once()


def test_heartbeat_on_expired_run_raises_invariant_error():
    conn, cur = _conn_with_cursor()
    cur.fetchone.return_value = None
    with pytest.raises(LedgerInvariantError, match="lease was lost"):
        PostgresRunLedger(conn).heartbeat(7)
    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()


def test_heartbeat_database_error():
    conn, cur = _conn_with_cursor()
    cur.execute.side_effect = psycopg2.OperationalError("down")
    with pytest.raises(StorageError, match="renewing lease of sync run 7 failed"):
        PostgresRunLedger(conn).heartbeat(7)
