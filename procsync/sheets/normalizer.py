from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from ..models.transaction_record import TransactionRecord

"""Row normalizer: raw sheet cells -> TransactionRecord.

Source data quality varies, so every parser here is permissive: a cell that
cannot be read yields None for that one field and the row still goes through.
Nothing in this module raises on cell content.

Dates:
    ``YYYY-MM-DD`` / ``YYYY/MM/DD`` when the first token has 4 characters,
    otherwise ``DD/MM/YYYY`` / ``DD-MM-YYYY``. Stored at 12:00 UTC so that the
    calendar day survives display in any timezone.
Numbers:
    Everything except digits, ``.`` and ``-`` is stripped (currency symbols,
    thousands separators), then the leading numeric prefix is read as a
    Decimal from its text.
"""

__all__ = [
    "build_header_index",
    "missing_fields",
    "is_blank_row",
    "parse_date",
    "parse_decimal",
    "parse_int",
    "normalize_row",
]

_DATE_SPLIT = re.compile(r"[-/]")
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_DECIMAL_PREFIX = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")

_TEXT_FIELDS = (
    "reference",
    "status",
    "contact_code",
    "vendor",
    "product_code",
    "product_name",
    "account_chart",
    "description",
    "unit",
    "tax_type",
    "major_group",
    "minor_group",
    "payment",
    "po_number",
    "url",
)
_DECIMAL_FIELDS = (
    "quantity",
    "price",
    "discount",
    "total_price",
    "vat_amount",
    "withholding_tax",
    "percentage",
)


def build_header_index(
    headers: Sequence[str], aliases: Mapping[str, Sequence[str]]
) -> dict[str, int]:
    """Map canonical field names to their column position in ``headers``.

    Header cells are trimmed before lookup. Unknown headers are ignored; when
    a recognised header appears twice the later column wins.
    """
    lookup: dict[str, str] = {}
    for field_name, texts in aliases.items():
        for text in texts:
            lookup[text.strip()] = field_name

    index: dict[str, int] = {}
    for position, header in enumerate(headers):
        field_name = lookup.get(str(header).strip())
        if field_name is not None:
            index[field_name] = position
    return index


def missing_fields(header_index: Mapping[str, int], aliases: Mapping[str, Sequence[str]]) -> list[str]:
    return sorted(name for name in aliases if name not in header_index)


def is_blank_row(row: Sequence[str | None]) -> bool:
    """True for a row with no cells or only empty cells (None counts as empty)."""
    return all(cell is None or cell == "" for cell in row)


def _leading_int(token: str) -> int | None:
    m = _LEADING_INT.match(token)
    return int(m.group(1)) if m else None


def parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    parts = _DATE_SPLIT.split(value)
    if len(parts) < 3:
        return None

    if len(parts[0]) == 4:
        year, month, day = (_leading_int(p) for p in parts[:3])
    else:
        day, month, year = (_leading_int(p) for p in parts[:3])
    if year is None or month is None or day is None:
        return None
    # two-digit years are ambiguous; treat them as unparseable
    if year < 1000:
        return None

    try:
        return datetime(year, month, day, 12, 0, 0, tzinfo=UTC)
    except ValueError:
        return None


def parse_decimal(value: str | None) -> Decimal | None:
    if not value:
        return None
    cleaned = _NON_NUMERIC.sub("", str(value))
    m = _DECIMAL_PREFIX.match(cleaned)
    if not m:
        return None
    try:
        return Decimal(m.group(0))
    except InvalidOperation:  # pragma: no cover - regex admits only valid literals
        return None


def parse_int(value: str | None) -> int | None:
    if not value:
        return None
    return _leading_int(str(value))


def normalize_row(
    row: Sequence[str],
    header_index: Mapping[str, int],
    row_number: int,
    row_hash: str,
) -> TransactionRecord:
    """Build the TransactionRecord for one populated sheet row."""

    def get_value(field_name: str) -> str | None:
        position = header_index.get(field_name)
        if position is None or position >= len(row):
            return None
        return row[position]

    text = {name: (get_value(name) or None) for name in _TEXT_FIELDS}
    amounts = {name: parse_decimal(get_value(name)) for name in _DECIMAL_FIELDS}

    total = amounts["total_price"]
    vat = amounts["vat_amount"]
    if total is None:
        total_with_vat = None
    elif vat is not None:
        total_with_vat = total + vat
    else:
        total_with_vat = total

    return TransactionRecord(
        row_number=row_number,
        row_hash=row_hash,
        date=parse_date(get_value("date")),
        item_number=parse_int(get_value("item_number")),
        total_with_vat=total_with_vat,
        **text,
        **amounts,
    )
