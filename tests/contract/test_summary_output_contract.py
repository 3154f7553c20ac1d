from __future__ import annotations

import re

from procsync.logging.init import log_summary, setup_logging
from procsync.services.reconciler import ReconciliationEngine
from procsync.services.summary import render_summary_line, summary_fields

"""SUMMARY line contract.

SUMMARY run={id} status=completed rows={n} inserted={n} updated={n} deleted={n}
batches={n} elapsed_sec={seconds}

The four counters always equal the ones stored on the ledger entry.
"""

SUMMARY_RE = re.compile(
    r"^SUMMARY run=(\d+) status=completed rows=(\d+) inserted=(\d+) updated=(\d+) deleted=(\d+) "
    r"batches=(\d+) elapsed_sec=(\d+(?:\.\d+)?)$"
)


def test_summary_matches_ledger_counts(source, store, ledger, row):
    engine = ReconciliationEngine(source, store, ledger, batch_size=2)
    source.rows = [row(vendor="A"), row(vendor="B"), row(vendor="C")]
    engine.sync()
    source.rows = [row(vendor="A"), row(vendor="B2")]
    result = engine.sync()

    m = SUMMARY_RE.match(render_summary_line(result))
    assert m is not None
    run = ledger.get_last_run()
    assert int(m.group(1)) == run.id
    assert tuple(int(m.group(i)) for i in range(2, 6)) == (
        run.total_rows,
        run.inserted_rows,
        run.updated_rows,
        run.deleted_rows,
    )
    assert (run.total_rows, run.inserted_rows, run.updated_rows, run.deleted_rows) == (2, 0, 1, 1)


def test_summary_is_logged_with_label(source, store, ledger, row, capsys):
    setup_logging()
    source.rows = [row(vendor="A")]
    result = ReconciliationEngine(source, store, ledger).sync()
    capsys.readouterr()

    log_summary(summary_fields(result))
    [line] = capsys.readouterr().out.splitlines()
    assert SUMMARY_RE.match(line)
