from __future__ import annotations

import pytest

from procsync.db.batch_write import BatchMetrics, BatchWriteError, WriteResult, batch_insert, batch_update


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.rows: list[list] = []
        self.template: str | None = None
        self.page_size: int | None = None
        self.missing_keys: set = set()


# execute_values is patched inside the module so no database is needed


@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import procsync.db.batch_write as bw

    def fake_execute_values(cursor, sql, rows, template=None, page_size=1000, fetch=False):
        rows = list(rows)
        cursor.queries.append(sql)
        cursor.rows.append(rows)
        cursor.template = template
        cursor.page_size = page_size
        if fetch:
            # every key matches a stored row unless the test says otherwise
            return [(r[0],) for r in rows if r[0] not in cursor.missing_keys]
        return None

    monkeypatch.setattr(bw, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert(cur, table="t", columns=["row_number", "vendor"], rows=[[2, "A"], [3, "B"]], page_size=500)
    assert isinstance(res, WriteResult)
    assert res.affected_rows == 2
    assert cur.queries == ['INSERT INTO t ("row_number","vendor") VALUES %s']
    assert cur.rows == [[[2, "A"], [3, "B"]]]
    assert cur.template is None
    assert cur.page_size == 500


def test_batch_insert_empty_rows_skips_statement():
    cur = DummyCursor()
    calls = []
    res = batch_insert(cur, table="t", columns=["c"], rows=[], metrics_callback=calls.append)
    assert res.affected_rows == 0
    assert cur.queries == []
    assert calls == []


def test_batch_insert_metrics_callback():
    cur = DummyCursor()
    captured: list[BatchMetrics] = []
    batch_insert(cur, table="t", columns=["c"], rows=[[1], [2], [3]], metrics_callback=captured.append)
    assert len(captured) == 1
    m = captured[0]
    assert m.batch_size == 3
    assert m.elapsed_seconds >= 0
    assert m.end_time >= m.start_time


def test_batch_insert_wraps_driver_errors(monkeypatch):
    import procsync.db.batch_write as bw

    def boom(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(bw, "execute_values", boom)
    captured: list[BatchMetrics] = []
    with pytest.raises(BatchWriteError, match="connection reset"):
        batch_insert(DummyCursor(), table="t", columns=["c"], rows=[[1]], metrics_callback=captured.append)
    # timing is still reported for the failed statement
    assert len(captured) == 1


def test_batch_update_sql_and_template():
    cur = DummyCursor()
    res = batch_update(
        cur,
        table="t",
        key_column="row_number",
        columns=["row_number", "vendor", "price"],
        rows=[(2, "A", None)],
        column_types={"row_number": "integer", "vendor": "text", "price": "numeric"},
    )
    assert res.affected_rows == 1
    sql = cur.queries[0]
    assert sql.startswith("UPDATE t AS t SET ")
    assert '"vendor" = v."vendor"' in sql
    assert '"price" = v."price"' in sql
    assert '"row_number" = v."row_number",' not in sql
    assert '"updated_at" = now()' in sql
    assert 'FROM (VALUES %s) AS v ("row_number","vendor","price")' in sql
    assert 'WHERE t."row_number" = v."row_number"' in sql
    assert sql.endswith('RETURNING t."row_number"')
    assert cur.template == "(%s::integer,%s::text,%s::numeric)"


def test_batch_update_without_touch_column():
    cur = DummyCursor()
    batch_update(
        cur, "t", "id", ["id", "name"], [(1, "x")], {"id": "integer", "name": "text"}, touch_column=None
    )
    assert "now()" not in cur.queries[0]


def test_batch_update_requires_key_column():
    with pytest.raises(BatchWriteError, match="key column"):
        batch_update(DummyCursor(), "t", "row_number", ["vendor"], [("A",)], {"vendor": "text"})


def test_batch_update_requires_column_types():
    with pytest.raises(BatchWriteError, match="no column type for 'vendor'"):
        batch_update(DummyCursor(), "t", "row_number", ["row_number", "vendor"], [(2, "A")], {"row_number": "integer"})


def test_batch_update_empty_rows():
    cur = DummyCursor()
    res = batch_update(cur, "t", "row_number", ["row_number"], [], {"row_number": "integer"})
    assert res.affected_rows == 0
    assert cur.queries == []


def test_batch_update_counts_returned_rows_across_pages():
    cur = DummyCursor()
    res = batch_update(
        cur, "t", "row_number", ["row_number", "vendor"], [(2, "A"), (3, "B"), (4, "C")],
        {"row_number": "integer", "vendor": "text"}, page_size=2,
    )
    assert res.affected_rows == 3


def test_batch_update_missing_target_row_raises():
    cur = DummyCursor()
    cur.missing_keys = {3}
    with pytest.raises(BatchWriteError, match="update matched 1 of 2 rows in t"):
        batch_update(
            cur, "t", "row_number", ["row_number", "vendor"], [(2, "A"), (3, "B")],
            {"row_number": "integer", "vendor": "text"},
        )
