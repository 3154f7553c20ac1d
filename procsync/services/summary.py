from __future__ import annotations

from ..models.processing_result import SyncResult
from ..models.sync_run import SyncRun

"""SUMMARY line and run description rendering."""

__all__ = [
    "format_seconds",
    "summary_fields",
    "render_summary_line",
    "describe_run",
]


def format_seconds(value: float) -> str:
    """Render seconds without scientific notation or trailing zeros."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return f"{value:.3f}".rstrip('0').rstrip('.')


def summary_fields(result: SyncResult) -> str:
    """Key=value body of the SUMMARY line, without the label.

    Format:
    run={id} status=completed rows={total} inserted={n} updated={n}
    deleted={n} batches={n} elapsed_sec={elapsed}
    """
    return (
        f"run={result.run_id} status=completed "
        f"rows={result.total_rows} "
        f"inserted={result.inserted_rows} "
        f"updated={result.updated_rows} "
        f"deleted={result.deleted_rows} "
        f"batches={result.total_batches} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )


def render_summary_line(result: SyncResult) -> str:
    """Render the full SUMMARY line for a successful run.

    Examples:
        >>> r = SyncResult(run_id=7, total_rows=10, inserted_rows=2, updated_rows=1,
        ...                deleted_rows=0, elapsed_seconds=1.5, total_batches=1)
        >>> render_summary_line(r)
        'SUMMARY run=7 status=completed rows=10 inserted=2 updated=1 deleted=0 batches=1 elapsed_sec=1.5'
    """
    return f"SUMMARY {summary_fields(result)}"


def describe_run(run: SyncRun) -> str:
    """One-line description of a ledger entry for ``status`` / ``runs``."""
    started = run.started_at.strftime("%Y-%m-%d %H:%M:%S")
    parts = [f"run={run.id}", f"status={run.status.value}", f"started={started}"]
    duration = run.duration_seconds
    if duration is not None:
        parts.append(f"duration_sec={format_seconds(round(duration, 3))}")
    parts.append(
        f"rows={run.total_rows} inserted={run.inserted_rows} "
        f"updated={run.updated_rows} deleted={run.deleted_rows}"
    )
    if run.error_message:
        parts.append(f"error={run.error_message!r}")
    return " ".join(parts)
