"""Background scheduler that runs the sync on a fixed wall-clock cadence."""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from ..models.processing_result import SyncResult
from .reconciler import SyncError, SyncInProgressError

__all__ = [
    "SyncScheduler",
    "seconds_until_next_slot",
]

logger = logging.getLogger(__name__)

RunSync = Callable[[threading.Event], SyncResult]


def seconds_until_next_slot(now: datetime, interval_seconds: int) -> float:
    """Seconds from ``now`` until the next multiple of ``interval_seconds``.

    Slots are aligned to the Unix epoch, so a 3600 s interval fires at the top
    of every UTC hour. Exactly on a slot boundary the wait is a full interval.
    """
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")
    elapsed = now.timestamp() % interval_seconds
    return interval_seconds - elapsed


class SyncScheduler:
    """Run ``run_sync`` on a daemon thread once per slot.

    The stop event doubles as the cancel event handed to ``run_sync`` so that
    ``stop()`` interrupts an in-flight run between chunks.
    """

    def __init__(
        self,
        run_sync: RunSync,
        *,
        interval_seconds: int = 3600,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._run_sync = run_sync
        self._interval = interval_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="procsync-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"scheduler started: sync every {self._interval}s")

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while True:
            wait = seconds_until_next_slot(self._clock(), self._interval)
            if self._stop_event.wait(wait):
                return
            self.run_once()

    def run_once(self) -> SyncResult | None:
        """Run one scheduled sync; failures are logged, never raised."""
        logger.info("scheduled sync starting")
        try:
            result = self._run_sync(self._stop_event)
        except SyncInProgressError as e:
            logger.info(f"scheduled sync skipped: {e}")
            return None
        except SyncError as e:
            logger.error(f"scheduled sync failed: {e}")
            return None
        except Exception:
            # Connection/setup errors outside the engine; the next slot retries
            logger.exception("scheduled sync crashed")
            return None
        logger.info(
            f"scheduled sync complete: {result.inserted_rows} inserted, "
            f"{result.updated_rows} updated, {result.deleted_rows} deleted"
        )
        return result
