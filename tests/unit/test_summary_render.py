from __future__ import annotations

from datetime import UTC, datetime

import pytest

from procsync.models.processing_result import SyncResult
from procsync.models.sync_run import RunStatus, SyncRun
from procsync.services.summary import describe_run, format_seconds, render_summary_line, summary_fields


@pytest.mark.parametrize(
    "value, expected",
    [(0, "0"), (2.0, "2"), (1.5, "1.5"), (1.23456, "1.235"), (0.004, "0.004"), (0.0000012, "0.000001")],
)
def test_format_seconds(value, expected):
    assert format_seconds(value) == expected


def test_render_summary_line():
    r = SyncResult(
        run_id=9,
        total_rows=120,
        inserted_rows=3,
        updated_rows=2,
        deleted_rows=1,
        elapsed_seconds=4.25,
        total_batches=2,
    )
    assert render_summary_line(r) == (
        "SUMMARY run=9 status=completed rows=120 inserted=3 updated=2 deleted=1 batches=2 elapsed_sec=4.25"
    )


def test_describe_completed_run():
    run = SyncRun(
        id=5,
        status=RunStatus.COMPLETED,
        started_at=datetime(2024, 5, 1, 9, 0, tzinfo=UTC),
        completed_at=datetime(2024, 5, 1, 9, 0, 12, tzinfo=UTC),
        total_rows=10,
        inserted_rows=1,
    )
    assert describe_run(run) == (
        "run=5 status=completed started=2024-05-01 09:00:00 duration_sec=12 "
        "rows=10 inserted=1 updated=0 deleted=0"
    )


def test_describe_failed_run_includes_error():
    run = SyncRun(
        id=6,
        status=RunStatus.FAILED,
        started_at=datetime(2024, 5, 1, 9, 0, tzinfo=UTC),
        completed_at=datetime(2024, 5, 1, 9, 0, 1, 500000, tzinfo=UTC),
        error_message="quota exceeded",
    )
    text = describe_run(run)
    assert "status=failed" in text
    assert "duration_sec=1.5" in text
    assert text.endswith("error='quota exceeded'")


def test_describe_running_run_has_no_duration():
    run = SyncRun(id=7, status=RunStatus.RUNNING, started_at=datetime(2024, 5, 1, tzinfo=UTC))
    assert "duration_sec" not in describe_run(run)


def test_summary_line_is_label_plus_fields():
    r = SyncResult(run_id=3, total_rows=1, inserted_rows=1, updated_rows=0, deleted_rows=0,
                   elapsed_seconds=0.5, total_batches=1)
    assert summary_fields(r) == "run=3 status=completed rows=1 inserted=1 updated=0 deleted=0 batches=1 elapsed_sec=0.5"
    assert render_summary_line(r) == f"SUMMARY {summary_fields(r)}"
