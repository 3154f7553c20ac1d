"""
FastAPI trigger surface for the procurement sync.

Routes:
- GET  /api/sync        last run status
- POST /api/sync        run a sync now (Bearer token when an API key is set)
- GET  /api/sync/runs   recent runs with aggregate stats
- GET  /health          liveness
"""

from __future__ import annotations

import hmac
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Header, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from procsync.db.errors import StorageError
from procsync.models.sync_run import RunHistoryStats
from procsync.services.context import ContextFactory
from procsync.services.reconciler import SyncError, SyncInProgressError

logger = logging.getLogger(__name__)


class SyncCountsModel(BaseModel):
    total_rows: int
    inserted_rows: int
    updated_rows: int
    deleted_rows: int


class SyncTriggerResponse(BaseModel):
    success: bool = True
    run_id: int
    result: SyncCountsModel
    synced_at: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _authorized(authorization: str | None, api_key: str | None) -> bool:
    if not api_key:
        return True
    expected = f"Bearer {api_key}"
    return authorization is not None and hmac.compare_digest(authorization, expected)


def create_app(open_context: ContextFactory, *, api_key: str | None = None) -> FastAPI:
    """Build the API around a factory of per-request sync contexts."""
    app = FastAPI(
        title="Procurement Sync API",
        description="Trigger and inspect Google Sheets -> PostgreSQL reconciliation runs",
        version="0.1.0",
    )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/api/sync", response_model=None)
    def last_sync() -> Any:
        try:
            with open_context() as ctx:
                run = ctx.ledger.get_last_run()
        except StorageError as e:
            logger.error(f"[API] reading last sync failed: {e}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
        return {"success": True, "last_sync": run.to_dict() if run else None}

    @app.post("/api/sync", response_model=None)
    def trigger_sync(authorization: str | None = Header(default=None)) -> Any:
        if not _authorized(authorization, api_key):
            return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

        logger.info("[API] manual sync triggered")
        try:
            with open_context() as ctx:
                result = ctx.engine.sync()
        except SyncInProgressError as e:
            return _error(status.HTTP_409_CONFLICT, str(e))
        except SyncError as e:
            logger.error(f"[API] sync failed: {e}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
        except StorageError as e:
            logger.error(f"[API] sync could not start: {e}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

        return SyncTriggerResponse(
            run_id=result.run_id,
            result=SyncCountsModel(**result.counts.to_dict()),
            synced_at=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        )

    @app.get("/api/sync/runs", response_model=None)
    def recent_runs(limit: int = Query(default=50, ge=1, le=500)) -> Any:
        try:
            with open_context() as ctx:
                runs = ctx.ledger.list_runs(limit=limit)
        except StorageError as e:
            logger.error(f"[API] reading sync runs failed: {e}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
        return {
            "success": True,
            "stats": RunHistoryStats.from_runs(runs).to_dict(),
            "runs": [r.to_dict() for r in runs],
        }

    return app
