from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any

"""TransactionRecord model for the sheet -> PostgreSQL sync.

One TransactionRecord is the typed form of one populated sheet row. The
``row_number`` is the sheet row the values came from (header = row 1, so the
first data row is 2) and acts as the natural key of the stored table.
"""

__all__ = [
    "TransactionRecord",
    "RECORD_COLUMNS",
    "COLUMN_TYPES",
]


@dataclass(frozen=True)
class TransactionRecord:
    """Typed representation of a single procurement sheet row.

    Money and quantity fields are ``Decimal`` so that totals reconcile to the
    cent. ``row_hash`` is the fingerprint of the raw cells that produced the
    field values.
    """
    row_number: int  # Sheet row (1-based, header excluded -> starts at 2)
    row_hash: str  # Fingerprint of the raw row at last sync
    date: datetime | None = None  # 12:00 UTC of the calendar date
    reference: str | None = None
    status: str | None = None
    contact_code: str | None = None
    vendor: str | None = None
    item_number: int | None = None
    product_code: str | None = None
    product_name: str | None = None
    account_chart: str | None = None
    description: str | None = None
    quantity: Decimal | None = None
    unit: str | None = None
    price: Decimal | None = None
    discount: Decimal | None = None
    total_price: Decimal | None = None
    tax_type: str | None = None
    vat_amount: Decimal | None = None
    withholding_tax: Decimal | None = None
    total_with_vat: Decimal | None = None  # total_price + vat_amount
    major_group: str | None = None
    minor_group: str | None = None
    percentage: Decimal | None = None
    payment: str | None = None
    po_number: str | None = None
    url: str | None = None

    def to_row(self) -> tuple[Any, ...]:
        """Values in ``RECORD_COLUMNS`` order, ready for a VALUES list."""
        return tuple(getattr(self, name) for name in RECORD_COLUMNS)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


RECORD_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(TransactionRecord))

# PostgreSQL types per column, used for typed casts in bulk UPDATE statements
COLUMN_TYPES: dict[str, str] = {
    "row_number": "integer",
    "row_hash": "text",
    "date": "timestamptz",
    "reference": "text",
    "status": "text",
    "contact_code": "text",
    "vendor": "text",
    "item_number": "integer",
    "product_code": "text",
    "product_name": "text",
    "account_chart": "text",
    "description": "text",
    "quantity": "numeric",
    "unit": "text",
    "price": "numeric",
    "discount": "numeric",
    "total_price": "numeric",
    "tax_type": "text",
    "vat_amount": "numeric",
    "withholding_tax": "numeric",
    "total_with_vat": "numeric",
    "major_group": "text",
    "minor_group": "text",
    "percentage": "numeric",
    "payment": "text",
    "po_number": "text",
    "url": "text",
}
