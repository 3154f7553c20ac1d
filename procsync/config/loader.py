from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DatabaseConfig,
    ServerConfig,
    SheetSourceConfig,
    SyncConfig,
    SyncSettings,
)
from ..sheets.header_map import DEFAULT_HEADER_ALIASES, merge_header_aliases

"""Config loader.

Responsibilities:
- Load the YAML config (``config/sync.yml`` unless overridden)
- Validate it against the bundled JSON schema
- Apply defaults and environment overrides (GOOGLE_SHEET_ID, SYNC_API_KEY)
- Reject header aliases for unknown canonical fields
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/sync.yml")


class ConfigError(Exception):
    pass


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    return Path(env.get("PROCSYNC_CONFIG") or DEFAULT_CONFIG_PATH)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation (missing keys, wrong types,
            unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path, environ: Mapping[str, str] | None = None) -> SyncConfig:
    env = os.environ if environ is None else environ
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    unknown = sorted(set(data.get("header_aliases", {})) - set(DEFAULT_HEADER_ALIASES))
    if unknown:
        raise ConfigError(f"header_aliases has unknown fields: {unknown}")

    sheet_raw = data["sheet"]
    sheet = SheetSourceConfig(
        kind=sheet_raw.get("kind", "google"),
        spreadsheet_id=env.get("GOOGLE_SHEET_ID") or sheet_raw.get("spreadsheet_id"),
        range=sheet_raw.get("range", "Sheet1"),
        credentials_file=sheet_raw.get("credentials_file"),
        excel_path=sheet_raw.get("excel_path"),
        timeout_seconds=float(sheet_raw.get("timeout_seconds", 30.0)),
    )
    if sheet.kind == "google" and not sheet.spreadsheet_id:
        raise ConfigError("sheet.spreadsheet_id is required (or set GOOGLE_SHEET_ID)")
    if sheet.kind == "excel" and not sheet.excel_path:
        raise ConfigError("sheet.excel_path is required when sheet.kind is excel")

    sync_raw = data.get("sync", {})
    sync = SyncSettings(
        batch_size=sync_raw.get("batch_size", 1000),
        lease_seconds=sync_raw.get("lease_seconds", 7200),
        schedule_interval_seconds=sync_raw.get("schedule_interval_seconds", 3600),
    )

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    server_raw = data.get("server", {})
    server = ServerConfig(
        host=server_raw.get("host", "127.0.0.1"),
        port=server_raw.get("port", 8000),
        api_key=env.get("SYNC_API_KEY") or server_raw.get("api_key"),
    )

    return SyncConfig(
        sheet=sheet,
        database=db,
        sync=sync,
        server=server,
        header_aliases=merge_header_aliases(data.get("header_aliases")),
    )
