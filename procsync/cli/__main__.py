from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

from procsync.config.loader import ConfigError, default_config_path, load_config
from procsync.db.connection import open_connection
from procsync.db.errors import StorageError
from procsync.db.run_ledger import PostgresRunLedger
from procsync.db.schema import ensure_schema
from procsync.logging.init import log_summary, set_debug, setup_logging
from procsync.models.config_models import SyncConfig
from procsync.models.sync_run import RunHistoryStats
from procsync.services.context import make_context_factory, open_sync_context
from procsync.services.reconciler import SyncError, SyncInProgressError
from procsync.services.summary import describe_run, summary_fields
from procsync.sheets.fingerprint import compute_row_hash
from procsync.sheets.normalizer import build_header_index, is_blank_row, missing_fields, normalize_row
from procsync.sheets.source import SourceFetchError, build_source

"""procsync command line.

Commands:
    sync      run one reconciliation pass and print a SUMMARY line
    status    show the last run
    runs      show recent runs with totals
    inspect   show how the sheet headers map, plus the first normalized rows
    init-db   create the tables
    serve     HTTP trigger API + hourly scheduler
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_SYNC_FAILED = 2
EXIT_IN_PROGRESS = 3


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the process env."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="procsync", description="Google Sheets -> PostgreSQL procurement sync")
    p.add_argument("--config", type=Path, default=None, help="Path to the YAML config (default config/sync.yml)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("sync", help="Run one sync now")
    sub.add_parser("status", help="Show the last sync run")
    runs = sub.add_parser("runs", help="Show recent sync runs")
    runs.add_argument("--limit", type=int, default=50)
    runs.add_argument("--json", action="store_true", help="Print JSON instead of text lines")
    inspect = sub.add_parser("inspect", help="Show header mapping and sample rows; writes nothing")
    inspect.add_argument("--rows", type=int, default=3, help="Sample rows to print")
    sub.add_parser("init-db", help="Create the database tables")
    serve = sub.add_parser("serve", help="Run the HTTP API and the hourly scheduler")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--no-schedule", action="store_true", help="Do not start the scheduler")
    return p.parse_args(argv)


def _cmd_sync(cfg: SyncConfig) -> int:
    logger = setup_logging()
    try:
        with open_sync_context(cfg, show_progress=True) as ctx:
            result = ctx.engine.sync()
    except SyncInProgressError as e:
        logger.warning(f"sync skipped: {e}")
        return EXIT_IN_PROGRESS
    except SyncError as e:
        logger.error(f"sync: {e}")
        return EXIT_SYNC_FAILED
    except StorageError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    log_summary(summary_fields(result))
    return EXIT_SUCCESS


def _cmd_status(cfg: SyncConfig) -> int:
    logger = setup_logging()
    try:
        with open_connection(cfg.database) as conn:
            run = PostgresRunLedger(conn, lease_seconds=cfg.sync.lease_seconds).get_last_run()
    except StorageError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    if run is None:
        logger.info("no sync runs recorded yet")
    else:
        logger.info(describe_run(run))
    return EXIT_SUCCESS


def _cmd_runs(cfg: SyncConfig, limit: int, as_json: bool) -> int:
    logger = setup_logging()
    try:
        with open_connection(cfg.database) as conn:
            runs = PostgresRunLedger(conn, lease_seconds=cfg.sync.lease_seconds).list_runs(limit=limit)
    except StorageError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    stats = RunHistoryStats.from_runs(runs)
    if as_json:
        print(json.dumps({"stats": stats.to_dict(), "runs": [r.to_dict() for r in runs]}, ensure_ascii=False))
        return EXIT_SUCCESS
    for run in runs:
        logger.info(describe_run(run))
    log_summary(
        f"runs={stats.total} completed={stats.completed} failed={stats.failed} "
        f"inserted={stats.total_inserted} updated={stats.total_updated} deleted={stats.total_deleted}"
    )
    return EXIT_SUCCESS


def _cmd_inspect(cfg: SyncConfig, sample_rows: int) -> int:
    logger = setup_logging()
    try:
        sheet = build_source(cfg.sheet).fetch()
    except SourceFetchError as e:
        logger.error(f"inspect: {e}")
        return EXIT_FATAL
    if sheet.is_empty:
        print("inspect: sheet is empty")
        return EXIT_SUCCESS

    header_index = build_header_index(sheet.headers, cfg.header_aliases)
    print(f"HEADERS ({len(sheet.headers)}): {sheet.headers}")
    print(f"MAPPED: {header_index}")
    print(f"MISSING: {missing_fields(header_index, cfg.header_aliases)}")
    print(f"DATA ROWS: {len(sheet.rows)} (blank: {sum(1 for r in sheet.rows if is_blank_row(r))})")
    shown = 0
    for position, row in enumerate(sheet.rows):
        if shown >= sample_rows:
            break
        if is_blank_row(row):
            continue
        record = normalize_row(row, header_index, position + 2, compute_row_hash(row))
        print(f"  ROW {record.row_number}: {json.dumps(record.to_dict(), default=str, ensure_ascii=False)}")
        shown += 1
    return EXIT_SUCCESS


def _cmd_init_db(cfg: SyncConfig) -> int:
    logger = setup_logging()
    try:
        with open_connection(cfg.database) as conn:
            ensure_schema(conn)
    except StorageError as e:
        logger.error(f"init-db: {e}")
        return EXIT_FATAL
    return EXIT_SUCCESS


def _cmd_serve(cfg: SyncConfig, host: str | None, port: int | None, schedule: bool) -> int:  # pragma: no cover
    import uvicorn

    from procsync.services.scheduler import SyncScheduler
    from procsync.web.app import create_app

    logger = setup_logging()
    factory = make_context_factory(cfg, run_lock=threading.Lock())
    app = create_app(factory, api_key=cfg.server.api_key)

    scheduler = None
    if schedule:
        def run_scheduled(cancel_event: threading.Event):
            with factory() as ctx:
                return ctx.engine.sync(cancel_event=cancel_event)

        scheduler = SyncScheduler(run_scheduled, interval_seconds=cfg.sync.schedule_interval_seconds)
        scheduler.start()

    bind_host = host or cfg.server.host
    bind_port = port or cfg.server.port
    logger.info(f"serving on http://{bind_host}:{bind_port}")
    try:
        uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")
    finally:
        if scheduler is not None:
            scheduler.stop()
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # Only read sys.argv when nothing was passed; [] is a valid argv in tests
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    config_path = args.config or default_config_path()
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "sync":
        return _cmd_sync(cfg)
    if args.command == "status":
        return _cmd_status(cfg)
    if args.command == "runs":
        return _cmd_runs(cfg, args.limit, args.json)
    if args.command == "inspect":
        return _cmd_inspect(cfg, args.rows)
    if args.command == "init-db":
        return _cmd_init_db(cfg)
    if args.command == "serve":
        return _cmd_serve(cfg, args.host, args.port, not args.no_schedule)
    return EXIT_FATAL  # pragma: no cover - argparse rejects unknown commands


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
