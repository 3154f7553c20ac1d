"""Sheet source adapters.

The reconciliation engine only needs ``fetch() -> SheetData``. Two adapters
satisfy it:

* :class:`GoogleSheetSource` reads the live procurement spreadsheet through the
  Sheets v4 API with a read-only service account.
* :class:`ExcelSheetSource` reads one worksheet of an exported ``.xlsx`` file.
  It is meant for back-fills and for running the sync without network access.

Every failure to obtain the rows surfaces as :class:`SourceFetchError`. The
engine does not look at the cause beyond recording the message.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import httplib2
import pandas as pd
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..models.config_models import SheetSourceConfig
from ..models.sheet_data import SheetData

__all__ = [
    "SCOPES",
    "SheetSource",
    "SourceFetchError",
    "SourceCredentialsError",
    "GoogleSheetSource",
    "ExcelSheetSource",
    "build_source",
    "load_credentials",
]

logger = logging.getLogger(__name__)

SCOPES: tuple[str, ...] = ("https://www.googleapis.com/auth/spreadsheets.readonly",)
TOKEN_URI = "https://oauth2.googleapis.com/token"


class SourceFetchError(RuntimeError):
    """Raised when the sheet rows cannot be obtained (auth, transport, file)."""


class SourceCredentialsError(SourceFetchError):
    """Raised when no usable service account credentials are configured."""


class SheetSource(Protocol):
    def fetch(self) -> SheetData: ...


def _to_sheet_data(values: list[list[Any]]) -> SheetData:
    matrix = [[("" if cell is None else str(cell)) for cell in row] for row in values]
    if not matrix:
        return SheetData(headers=[], rows=[])
    return SheetData(headers=matrix[0], rows=matrix[1:])


def load_credentials(
    credentials_file: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> service_account.Credentials:
    """Resolve service account credentials.

    Order: explicit ``credentials_file``, then the
    ``GOOGLE_SERVICE_ACCOUNT_EMAIL`` / ``GOOGLE_PRIVATE_KEY`` pair, then
    ``GOOGLE_APPLICATION_CREDENTIALS``. Private keys stored in a single-line
    env var carry literal ``\\n`` sequences; they are unescaped here.
    """
    env = os.environ if environ is None else environ
    try:
        if credentials_file:
            return service_account.Credentials.from_service_account_file(
                credentials_file, scopes=SCOPES
            )
        email = env.get("GOOGLE_SERVICE_ACCOUNT_EMAIL")
        private_key = env.get("GOOGLE_PRIVATE_KEY")
        if email and private_key:
            info = {
                "type": "service_account",
                "client_email": email,
                "private_key": private_key.replace("\\n", "\n"),
                "token_uri": TOKEN_URI,
            }
            return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        key_file = env.get("GOOGLE_APPLICATION_CREDENTIALS")
        if key_file:
            return service_account.Credentials.from_service_account_file(key_file, scopes=SCOPES)
    except (OSError, ValueError, GoogleAuthError) as e:
        raise SourceCredentialsError(f"invalid Google service account credentials: {e}") from e
    raise SourceCredentialsError("Missing Google Service Account credentials")


class GoogleSheetSource:
    """Read header + data rows of one range of a Google spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        sheet_range: str = "Sheet1",
        *,
        credentials_file: str | None = None,
        timeout_seconds: float = 30.0,
        service: Any = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.sheet_range = sheet_range
        self.credentials_file = credentials_file
        self.timeout_seconds = timeout_seconds
        self._service = service

    def _build_service(self) -> Any:
        credentials = load_credentials(self.credentials_file)
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout_seconds))
        return build("sheets", "v4", http=http, cache_discovery=False)

    def fetch(self) -> SheetData:
        try:
            if self._service is None:
                self._service = self._build_service()
            response = (
                self._service.spreadsheets()
                .values()
                .get(spreadsheetId=self.spreadsheet_id, range=self.sheet_range)
                .execute()
            )
        except SourceFetchError:
            raise
        except (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
            raise SourceFetchError(f"Google Sheets fetch failed: {e}") from e

        data = _to_sheet_data(response.get("values", []))
        logger.info(f"fetched {len(data.rows)} rows from sheet range={self.sheet_range}")
        return data


class ExcelSheetSource:
    """Read an exported workbook with the same shape the Sheets API returns.

    All cells are read as text with NA coercion disabled so that the row hash
    sees exactly what a person typed. Trailing empty cells and trailing empty
    rows are dropped, as the API does.
    """

    def __init__(self, path: Path, sheet_name: str | int = 0) -> None:
        self.path = Path(path)
        self.sheet_name = sheet_name

    def fetch(self) -> SheetData:
        if not self.path.exists():
            raise SourceFetchError(f"workbook not found: {self.path}")
        try:
            df = pd.read_excel(
                self.path,
                sheet_name=self.sheet_name,
                header=None,
                dtype=str,
                keep_default_na=False,
            )
        except (OSError, ValueError, KeyError) as e:
            raise SourceFetchError(f"failed reading workbook {self.path.name}: {e}") from e

        values: list[list[str]] = []
        for raw in df.fillna("").itertuples(index=False, name=None):
            row = [str(cell) for cell in raw]
            while row and row[-1] == "":
                row.pop()
            values.append(row)
        while values and not values[-1]:
            values.pop()

        data = _to_sheet_data(values)
        logger.info(f"read {len(data.rows)} rows from workbook {self.path.name}")
        return data


def _worksheet_from_range(sheet_range: str) -> str:
    return sheet_range.split("!", 1)[0].strip("'")


def build_source(config: SheetSourceConfig) -> SheetSource:
    """Create the adapter selected by ``config.kind``."""
    if config.kind == "excel":
        if not config.excel_path:
            raise SourceFetchError("sheet.excel_path is required for kind=excel")
        return ExcelSheetSource(Path(config.excel_path), _worksheet_from_range(config.range))
    if config.kind == "google":
        if not config.spreadsheet_id:
            raise SourceFetchError("sheet.spreadsheet_id (or GOOGLE_SHEET_ID) is required")
        return GoogleSheetSource(
            config.spreadsheet_id,
            config.range,
            credentials_file=config.credentials_file,
            timeout_seconds=config.timeout_seconds,
        )
    raise SourceFetchError(f"unknown sheet source kind: {config.kind}")
