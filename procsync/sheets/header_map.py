from __future__ import annotations

from collections.abc import Mapping, Sequence

"""Header text -> canonical field table.

The procurement sheet is maintained in Thai. Each canonical field lists the
header texts it is recognised by; the English canonical name is accepted too
so that exported or translated copies of the sheet map the same way.
``header_aliases`` in the config file overrides entries field by field.
"""

__all__ = [
    "DEFAULT_HEADER_ALIASES",
    "merge_header_aliases",
]

DEFAULT_HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("วันที่ออก", "date"),
    "reference": ("อ้างอิง", "reference"),
    "status": ("สถานะ", "status"),
    "contact_code": ("รหัสผู้ติดต่อ", "contact_code"),
    "vendor": ("ผู้ขาย/ผู้ให้บริการ", "vendor"),
    "item_number": ("รายการที่", "item_number"),
    "product_code": ("รหัสสินค้า/บริการ", "product_code"),
    "product_name": ("ชื่อสินค้า/บริการ", "product_name"),
    "account_chart": ("ผังบัญชี", "account_chart"),
    "description": ("คำอธิบาย", "description"),
    "quantity": ("จำนวน", "quantity"),
    "unit": ("หน่วย", "unit"),
    "price": ("ราคา", "price"),
    "discount": ("ส่วนลด", "discount"),
    "total_price": ("มูลค่าก่อนภาษี", "total_price"),
    "tax_type": ("ประเภทภาษี", "tax_type"),
    "vat_amount": ("ยอด VAT", "vat_amount"),
    "withholding_tax": ("หัก ณ ที่จ่าย", "withholding_tax"),
    "major_group": ("กลุ่มใหญ่", "major_group"),
    "minor_group": ("กลุ่มย่อย", "minor_group"),
    "percentage": ("%", "percentage"),
    "payment": ("payment",),
    "po_number": ("เลข-PO", "po_number"),
    "url": ("url",),
}


def merge_header_aliases(
    overrides: Mapping[str, Sequence[str]] | None,
) -> dict[str, tuple[str, ...]]:
    """Return the default table with ``overrides`` applied per field."""
    merged = dict(DEFAULT_HEADER_ALIASES)
    for field_name, texts in (overrides or {}).items():
        merged[field_name] = tuple(t.strip() for t in texts)
    return merged
