from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord

"""Failed-run error log.

JSON Lines with a fixed key set (see ErrorRecord), written to
``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC). The file is named on the first
flush that has something to write; later flushes append to it. A server
process shares one buffer between request handlers and the scheduler thread,
so append and flush are serialized.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """Thread-safe buffer of ErrorRecords, flushed as JSON Lines."""

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._logs_dir = logs_dir or LOGS_DIR
        self._file_path: Path | None = None
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        with self._lock:
            self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when there was nothing to write."""
        with self._lock:
            if not self._records:
                return None
            lines = "".join(r.to_json_line() + "\n" for r in self._records)
            fp = self.file_path
            with fp.open("a", encoding="utf-8") as f:
                f.write(lines)
            self._records.clear()
            return fp
