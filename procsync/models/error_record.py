from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the failed-run error log.

Each failed sync run leaves one JSON Lines record behind. The key set is fixed
so that log shippers can rely on it:

    {"timestamp", "run_id", "stage", "error_type", "message"}

``run_id`` is -1 when the failure happened before a ledger entry existed.
"""

__all__ = [
    "ErrorRecord",
]


def _error_type_name(exc: BaseException) -> str:
    """``SourceFetchError`` -> ``SOURCE_FETCH_ERROR``."""
    name = type(exc).__name__
    out: list[str] = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0 and not name[i - 1].isupper():
            out.append("_")
        out.append(ch.upper())
    return "".join(out)


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        run_id: SyncRun id, or -1 when no run was created
        stage: Engine stage that failed (fetch, baseline, apply, delete, finalize)
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Error message as recorded on the run
    """
    timestamp: str
    run_id: int
    stage: str
    error_type: str
    message: str

    @staticmethod
    def create(run_id: int, stage: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            run_id=run_id,
            stage=stage,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_exception(run_id: int, stage: str, exc: BaseException) -> ErrorRecord:
        return ErrorRecord.create(run_id, stage, _error_type_name(exc), str(exc))

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
